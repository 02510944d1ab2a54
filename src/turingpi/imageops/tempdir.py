"""Managed temporary workspaces with age-based sweeping."""

import atexit
import logging
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Union


logger = logging.getLogger(__name__)

WRITE_PROBE = ".write_test"


class TempDirManager:
    """Creates, tracks and expires temporary directories under one base."""

    def __init__(self, max_age: float = 24 * 3600, sweep_interval: float = 3600):
        """Initialize manager; call :meth:`initialize` before use."""
        self._lock = threading.Lock()
        self._dirs: Dict[Path, float] = {}
        self._base: Optional[Path] = None
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        self.max_age = max_age
        self.sweep_interval = sweep_interval

    @property
    def base_dir(self) -> Optional[Path]:
        return self._base

    def initialize(self, base_dir: Optional[Union[str, Path]] = None) -> Path:
        """Prepare the base directory and start the sweeper.

        Fails fast with OSError when the base is not writable.
        """
        base = Path(base_dir) if base_dir else Path(tempfile.gettempdir()) / "turingpi"
        base.mkdir(parents=True, exist_ok=True)

        probe = base / WRITE_PROBE
        probe.write_text("ok")
        probe.unlink()

        with self._lock:
            self._base = base
            if self._sweeper is None or not self._sweeper.is_alive():
                self._stop.clear()
                self._sweeper = threading.Thread(
                    target=self._sweep_loop,
                    name="turingpi-tempdir-sweeper",
                    daemon=True,
                )
                self._sweeper.start()

        logger.debug(f"Temp directory manager using {base}")
        return base

    def create(self, prefix: str = "turingpi-") -> Path:
        """Create a managed directory under the base."""
        with self._lock:
            if self._base is None:
                raise RuntimeError("TempDirManager is not initialized")
            path = Path(tempfile.mkdtemp(prefix=prefix, dir=self._base))
            self._dirs[path] = time.time()
        logger.debug(f"Created temp directory {path}")
        return path

    def cleanup(self, path: Union[str, Path]) -> None:
        """Remove a managed directory."""
        path = Path(path)
        with self._lock:
            if path not in self._dirs:
                raise ValueError(f"{path} is not a managed temp directory")
            del self._dirs[path]
        if path.exists():
            shutil.rmtree(path)
        logger.debug(f"Removed temp directory {path}")

    def release(self, path: Union[str, Path]) -> None:
        """Stop managing ``path`` without deleting it."""
        with self._lock:
            self._dirs.pop(Path(path), None)
        logger.info(f"Keeping temp directory {path}")

    def active_dirs(self) -> List[Path]:
        with self._lock:
            return sorted(self._dirs)

    def set_max_age(self, max_age: float) -> None:
        if max_age <= 0:
            raise ValueError("max_age must be positive")
        with self._lock:
            self.max_age = max_age

    def sweep_expired(self) -> List[Path]:
        """Remove managed directories older than max age."""
        cutoff = time.time() - self.max_age
        with self._lock:
            expired = [path for path, created in self._dirs.items() if created < cutoff]
            for path in expired:
                del self._dirs[path]

        for path in expired:
            try:
                shutil.rmtree(path)
                logger.info(f"Removed expired temp directory {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to remove expired temp directory {path}: {e}")
        return expired

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            self.sweep_expired()

    def shutdown(self) -> None:
        """Stop the sweeper and remove every managed directory."""
        self._stop.set()
        with self._lock:
            sweeper, self._sweeper = self._sweeper, None
            paths = list(self._dirs)
            self._dirs.clear()

        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=5)

        for path in paths:
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to remove temp directory {path}: {e}")


_manager: Optional[TempDirManager] = None
_manager_lock = threading.Lock()


def get_temp_manager(
    base_dir: Optional[Union[str, Path]] = None,
    max_age: float = 24 * 3600,
    sweep_interval: float = 3600,
) -> TempDirManager:
    """Return the process-wide manager, initializing it on first use."""
    global _manager
    with _manager_lock:
        if _manager is None:
            manager = TempDirManager(max_age=max_age, sweep_interval=sweep_interval)
            manager.initialize(base_dir)
            atexit.register(manager.shutdown)
            _manager = manager
        return _manager


def reset_temp_manager() -> None:
    """Shut down and forget the process-wide manager."""
    global _manager
    with _manager_lock:
        if _manager is not None:
            _manager.shutdown()
            atexit.unregister(_manager.shutdown)
        _manager = None
