from __future__ import annotations
from PyQt6.QtCore import QObject, pyqtSignal


class AppLogger(QObject):
    message_logged = pyqtSignal(str, str)  # category, message

    def log(self, category: str, message: str) -> None:
        print(f"[{category}] {message}", flush=True)
        self.message_logged.emit(category, message)

    def state(self, message: str) -> None:
        self.log("STATE", message)

    def preset(self, message: str) -> None:
        self.log("PRESET", message)

    def file(self, message: str) -> None:
        self.log("FILE", message)

    def general(self, message: str) -> None:
        self.log("GENERAL", message)
