import os
import threading
import pygame

from announcer.errors import PlaybackError


class PygameAudioSink:
    """Plays announcement MP3s through the single pygame music channel.

    Only one announcement plays at a time: starting a new one stops the
    current one.
    """

    def __init__(self, media_root=None, mixer=None):
        self.media_root = media_root or os.getenv('MEDIA_ROOT', 'public')
        self.mixer = mixer or pygame.mixer
        self.current_path = None
        self._lock = threading.Lock()

    def _ensure_mixer(self):
        if self.mixer.get_init():
            return
        # Headless hosts have no display
        if 'DISPLAY' not in os.environ:
            os.environ.setdefault('SDL_VIDEODRIVER', 'dummy')
        try:
            self.mixer.init()
        except pygame.error as e:
            raise PlaybackError(f"Dispositivo audio non disponibile: {e}")

    def resolve_file(self, audio_path):
        return os.path.join(self.media_root, audio_path.lstrip('/'))

    def play(self, audio_path):
        file_path = self.resolve_file(audio_path)
        if not os.path.isfile(file_path):
            raise PlaybackError(f"File audio non trovato: {audio_path}")

        with self._lock:
            self._ensure_mixer()
            try:
                if self.mixer.music.get_busy():
                    self.mixer.music.stop()
                self.mixer.music.load(file_path)
                self.mixer.music.play()
            except pygame.error as e:
                self.current_path = None
                raise PlaybackError(f"Riproduzione rifiutata per {audio_path}: {e}")
            self.current_path = audio_path
        print(f"In riproduzione: {audio_path}", flush=True)

    def stop(self):
        with self._lock:
            if self.mixer.get_init() and self.mixer.music.get_busy():
                self.mixer.music.stop()
            self.current_path = None
