from kafka import KafkaProducer
import json
import os
import threading

CHANGE_EVENTS = ('INSERT', 'UPDATE', 'DELETE')


class ChangePublisher:
    def __init__(self, bootstrap_servers=None, topic=None, producer_factory=None):
        self.bootstrap_servers = bootstrap_servers or os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'kafka:9092')
        self.topic = topic or os.getenv('CHANGES_TOPIC', 'dashboard-changes')
        self.producer_factory = producer_factory or self._default_producer
        self.producer = None
        self.lock = threading.Lock()

    def _default_producer(self):
        return KafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            value_serializer=lambda v: json.dumps(v).encode('utf-8'),
            acks='all',
            linger_ms=5,  # Signals should reach the stations quickly
            retry_backoff_ms=1000
        )

    def _connect(self):
        try:
            self.producer = self.producer_factory()
            print(f"Kafka Producer connesso a {self.bootstrap_servers}", flush=True)
        except Exception as e:
            print(f"Errore connessione Kafka: {e}", flush=True)
            self.producer = None

    def publish(self, table, event, airport_code):
        # The row is already committed: a lost signal only delays the stations
        # until their next refresh, so failures are logged and not raised.
        if event not in CHANGE_EVENTS:
            raise ValueError(f"Evento non valido: {event}")

        signal = {'table': table, 'event': event, 'airport_code': airport_code}

        with self.lock:
            if not self.producer:
                self._connect()
            if not self.producer:
                print(f"-> Kafka ERROR: segnale {table}/{event} per {airport_code} non inviato.", flush=True)
                return False

            try:
                self.producer.send(self.topic, signal)
                self.producer.flush()
                print(f"-> Kafka OK: {table}/{event} per {airport_code}.", flush=True)
                return True
            except Exception as e:
                print(f"ERRORE Kafka per {airport_code}: {e}", flush=True)
                try:
                    self.producer.close()
                except Exception as close_err:
                    print(f"Errore durante la chiusura del Producer: {close_err}", flush=True)
                self.producer = None
                return False

    def close(self):
        with self.lock:
            if self.producer:
                try:
                    self.producer.close()
                    print("Producer Kafka chiuso correttamente.", flush=True)
                except Exception as e:
                    print(f"Errore durante la chiusura del Producer: {e}", flush=True)
                self.producer = None
