import logging
import queue
import sys
import threading
import time

from PySide6.QtCore import QTimer

# Use absolute import so it works when frozen as a script entrypoint.
from hpen_app.app import CONSOLE_COMMANDS, create_application, create_session, dispatch_command
from hpen_app.config import load_session_config

logger = logging.getLogger(__name__)


def _read_console(commands: "queue.Queue[str]") -> None:
    for line in sys.stdin:
        commands.put(line)


def main() -> int:
    app = create_application()
    session = create_session()
    session.open()

    # stdin is read on its own thread; commands are applied on the Qt loop.
    commands: "queue.Queue[str]" = queue.Queue()
    threading.Thread(target=_read_console, args=(commands,), name="console", daemon=True).start()
    logger.info("Commands: %s, q = quit", ", ".join(f"{k} = {v}" for k, v in CONSOLE_COMMANDS.items()))

    last = time.monotonic()

    def on_frame() -> None:
        nonlocal last
        while not commands.empty():
            text = commands.get_nowait()
            if text.strip().lower() == "q":
                app.quit()
                return
            if text.strip() and not dispatch_command(session, text):
                logger.warning("Unknown command: %s", text.strip())
        now = time.monotonic()
        session.tick(now - last)
        last = now

    timer = QTimer()
    timer.setInterval(max(1, int(1000 / load_session_config().frame_hz)))
    timer.timeout.connect(on_frame)
    timer.start()
    app.aboutToQuit.connect(session.close)

    if "--start" in sys.argv:
        session.start_sequence()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
