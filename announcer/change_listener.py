from kafka import KafkaConsumer
import itertools
import json
import os
import threading
import time


class Subscription:
    def __init__(self, listener, subscription_id, table, airport_code, callback):
        self.listener = listener
        self.id = subscription_id
        self.table = table
        self.airport_code = airport_code
        self.callback = callback

    def matches(self, signal):
        return signal.get('table') == self.table and signal.get('airport_code') == self.airport_code

    def unsubscribe(self):
        self.listener.unsubscribe(self)


class ChangeListener:
    def __init__(self, bootstrap_servers=None, topic=None, consumer_factory=None):
        self.bootstrap_servers = bootstrap_servers or os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'kafka:9092')
        self.topic = topic or os.getenv('CHANGES_TOPIC', 'dashboard-changes')
        self.consumer_factory = consumer_factory or self._default_consumer

        self.subscriptions = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = None
        self.consumer = None

    def _default_consumer(self):
        return KafkaConsumer(
            self.topic,
            bootstrap_servers=self.bootstrap_servers,
            group_id=None,               # Every station must see every signal
            auto_offset_reset='latest',  # Signals are prompts to re-fetch, old ones are useless
            enable_auto_commit=False,
            value_deserializer=lambda v: json.loads(v.decode('utf-8'))
        )

    def subscribe(self, table, airport_code, callback):
        with self._lock:
            subscription = Subscription(self, next(self._ids), table, airport_code.upper(), callback)
            self.subscriptions[subscription.id] = subscription
        print(f"Sottoscrizione {subscription.id}: {table} per {subscription.airport_code}", flush=True)
        return subscription

    def unsubscribe(self, subscription):
        with self._lock:
            self.subscriptions.pop(subscription.id, None)

    def dispatch(self, signal):
        if not isinstance(signal, dict):
            print(f"Segnale di modifica non valido, lo salto: {signal}", flush=True)
            return 0

        with self._lock:
            targets = [s for s in self.subscriptions.values() if s.matches(signal)]

        for subscription in targets:
            try:
                subscription.callback(signal)
            except Exception as e:
                print(f"Errore nella callback della sottoscrizione {subscription.id}: {e}", flush=True)
        return len(targets)

    def _connect(self):
        while self.consumer is None and not self._stop.is_set():
            try:
                print(f"Tentativo connessione a Kafka ({self.bootstrap_servers})...", flush=True)
                self.consumer = self.consumer_factory()
                print(f"In ascolto sul topic '{self.topic}'...", flush=True)
            except Exception as e:
                print(f"Kafka non pronto, riprovo tra 5s... ({e})", flush=True)
                self._stop.wait(5)

    def _run(self):
        self._connect()
        while not self._stop.is_set():
            try:
                batches = self.consumer.poll(timeout_ms=1000)
            except Exception as e:
                print(f"Errore lettura da Kafka: {e}", flush=True)
                time.sleep(1)
                continue

            for records in batches.values():
                for message in records:
                    self.dispatch(message.value)

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='change-listener', daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
        if self.consumer:
            try:
                self.consumer.close()
                print("Consumer chiuso correttamente.", flush=True)
            except Exception as e:
                print(f"Errore durante la chiusura del Consumer: {e}", flush=True)
            self.consumer = None
