"""Process-wide registry of worker containers.

Every container this process creates is registered here until its removal
is confirmed. On interpreter exit and on SIGTERM, SIGINT or SIGHUP the
registry sweeps whatever is still tracked, so containers never outlive the
process that made them.
"""

import atexit
import logging
import signal
import subprocess
import threading
import time
import weakref
from typing import Callable, Dict, List, Optional, Set

import docker
from docker.errors import DockerException, NotFound

from turingpi.models.config import DockerConfig


logger = logging.getLogger(__name__)

CancelListener = Callable[[int], None]


def handled_signals() -> List[int]:
    """Signals that trigger a sweep on this platform."""
    names = ("SIGTERM", "SIGINT", "SIGHUP")
    return [getattr(signal, name) for name in names if hasattr(signal, name)]


def _docker_cli(args: List[str], timeout: float) -> Optional[subprocess.CompletedProcess]:
    """Run the docker CLI synchronously; None when it cannot run."""
    try:
        return subprocess.run(
            ["docker", *args],
            capture_output=True,
            text=True,
            timeout=max(timeout, 1.0),
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"docker {' '.join(args)} failed: {e}")
        return None


def _finalize_leftovers(ids: Set[str]) -> None:
    """Last-chance cleanup when a registry is collected while still tracking."""
    if not ids:
        return
    logger.warning(f"Container registry dropped with {len(ids)} tracked container(s); force removing")
    for container_id in list(ids):
        _docker_cli(["rm", "-f", container_id], timeout=10)
    ids.clear()


class ContainerRegistry:
    """Tracks live container ids and guarantees a cleanup attempt."""

    def __init__(
        self,
        client_factory: Optional[Callable[[], docker.DockerClient]] = None,
        stop_grace: int = 5,
        cleanup_timeout: float = 10.0,
        sweep_timeout: float = 30.0,
        install_hooks: bool = True,
    ):
        """Initialize registry."""
        # Reentrant: a signal handler may interrupt a holder on the main thread
        self._lock = threading.RLock()
        self._ids: Set[str] = set()
        self._client: Optional[docker.DockerClient] = None
        self._client_factory = client_factory or (
            lambda: docker.from_env(timeout=int(cleanup_timeout))
        )
        self._cleanup_hook: Optional[Callable[[], None]] = None
        self._cancel_listeners: List[CancelListener] = []
        self._previous_handlers: Dict[int, object] = {}
        self._signals_installed = not install_hooks
        self._pending_signal: Optional[int] = None
        self._sweeping = False
        self._closed = False

        self.stop_grace = stop_grace
        self.cleanup_timeout = cleanup_timeout
        self.sweep_timeout = sweep_timeout

        self._finalizer = weakref.finalize(self, _finalize_leftovers, self._ids)
        self._install_hooks = install_hooks
        if install_hooks:
            atexit.register(self.sweep)

    @classmethod
    def from_config(cls, config: DockerConfig, **kwargs) -> "ContainerRegistry":
        """Create a registry using the timeouts from config."""
        return cls(
            stop_grace=config.stop_grace,
            cleanup_timeout=config.cleanup_timeout,
            sweep_timeout=config.sweep_timeout,
            **kwargs,
        )

    def bind_client(self, client: docker.DockerClient) -> None:
        """Use an already connected client for cleanup."""
        with self._lock:
            self._client = client

    def register(self, container_id: str) -> None:
        """Track a container id."""
        if not container_id:
            raise ValueError("Container id must not be empty")
        with self._lock:
            self._ids.add(container_id)
        logger.debug(f"Registered container {container_id[:12]}")
        self.install_signal_handlers()

    def unregister(self, container_id: str) -> None:
        """Stop tracking a container id."""
        with self._lock:
            self._ids.discard(container_id)
        logger.debug(f"Unregistered container {container_id[:12]}")

    def count(self) -> int:
        """Number of tracked containers."""
        with self._lock:
            return len(self._ids)

    def tracked(self) -> List[str]:
        """Snapshot of tracked container ids."""
        with self._lock:
            return sorted(self._ids)

    def set_cleanup_hook(self, hook: Optional[Callable[[], None]]) -> None:
        """Set a callable that runs after every sweep."""
        with self._lock:
            self._cleanup_hook = hook

    def add_cancel_listener(self, listener: CancelListener) -> None:
        """Notify ``listener`` with the signal number after a signal sweep."""
        with self._lock:
            self._cancel_listeners.append(listener)

    def remove_cancel_listener(self, listener: CancelListener) -> None:
        """Remove a cancel listener."""
        with self._lock:
            if listener in self._cancel_listeners:
                self._cancel_listeners.remove(listener)

    def _client_or_none(self) -> Optional[docker.DockerClient]:
        with self._lock:
            if self._client is None:
                try:
                    self._client = self._client_factory()
                except DockerException as e:
                    logger.warning(f"Docker API unavailable for cleanup: {e}")
                    return None
            return self._client

    def sweep(self) -> int:
        """Stop and remove every tracked container.

        Failures are logged, never raised. Each id leaves the registry
        whether or not its removal succeeded. Returns the number of
        containers attempted.
        """
        with self._lock:
            if self._sweeping:
                return 0
            self._sweeping = True
            ids = list(self._ids)
            hook = self._cleanup_hook

        try:
            if ids:
                logger.info(f"Sweeping {len(ids)} tracked container(s)")
                self._destroy_all(ids)
        except Exception as e:
            logger.error(f"Container sweep failed: {e}", exc_info=True)
        finally:
            with self._lock:
                self._ids.difference_update(ids)
                self._sweeping = False
            if hook is not None:
                try:
                    hook()
                except Exception as e:
                    logger.error(f"Cleanup hook failed: {e}", exc_info=True)

        return len(ids)

    def _destroy_all(self, ids: List[str]) -> None:
        client = self._client_or_none()
        errors: Dict[str, BaseException] = {}

        def worker(container_id: str) -> None:
            try:
                self._destroy(client, container_id)
            except Exception as e:
                errors[container_id] = e

        threads = []
        for container_id in ids:
            thread = threading.Thread(
                target=worker,
                args=(container_id,),
                name=f"turingpi-sweep-{container_id[:12]}",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError as e:
                # No new threads during interpreter finalization
                logger.debug(f"Destroying container {container_id[:12]} inline: {e}")
                worker(container_id)
                continue
            threads.append((container_id, thread))

        deadline = time.monotonic() + self.sweep_timeout
        for container_id, thread in threads:
            thread.join(max(deadline - time.monotonic(), 0))
            if thread.is_alive():
                logger.error(
                    f"Cleanup of container {container_id[:12]} did not finish "
                    f"within {self.sweep_timeout}s"
                )
        for container_id, error in errors.items():
            logger.error(f"Cleanup of container {container_id[:12]} failed: {error}")

    def _destroy(self, client: Optional[docker.DockerClient], container_id: str) -> bool:
        """Stop then force-remove one container within its own deadline."""
        deadline = time.monotonic() + self.cleanup_timeout
        short = container_id[:12]
        removed = False

        if client is not None:
            try:
                container = client.containers.get(container_id)
            except NotFound:
                logger.debug(f"Container {short} already gone")
                return True
            except DockerException as e:
                logger.warning(f"API lookup of container {short} failed: {e}")
                container = None

            if container is not None:
                try:
                    container.stop(timeout=self.stop_grace)
                except DockerException as e:
                    logger.debug(f"Stop of container {short} failed: {e}")
                try:
                    container.remove(force=True)
                    removed = True
                except NotFound:
                    removed = True
                except DockerException as e:
                    logger.warning(f"API remove of container {short} failed: {e}")

        if removed and self._confirm_absent(client, container_id, deadline):
            logger.info(f"Removed container {short}")
            return True

        logger.info(f"Falling back to docker CLI for container {short}")
        _docker_cli(["rm", "-f", container_id], timeout=deadline - time.monotonic())
        if self._confirm_absent(client, container_id, deadline):
            logger.info(f"Removed container {short} via CLI")
            return True

        logger.error(f"Container {short} still exists after cleanup")
        return False

    def _confirm_absent(
        self,
        client: Optional[docker.DockerClient],
        container_id: str,
        deadline: float,
    ) -> bool:
        if client is not None:
            try:
                client.containers.get(container_id)
                return False
            except NotFound:
                return True
            except DockerException as e:
                logger.debug(f"API verification of {container_id[:12]} failed: {e}")

        result = _docker_cli(
            ["ps", "-a", "--filter", f"id={container_id}", "--format", "{{.ID}}"],
            timeout=deadline - time.monotonic(),
        )
        return result is not None and result.returncode == 0 and not result.stdout.strip()

    def verify_removed(self, container_id: str) -> bool:
        """Confirm the container no longer exists. Never re-adds tracking."""
        client = self._client_or_none()
        absent = self._confirm_absent(client, container_id, time.monotonic() + self.cleanup_timeout)
        if not absent:
            logger.warning(f"Container {container_id[:12]} could not be confirmed removed")
        return absent

    def destroy(self, container_id: str) -> bool:
        """Clean up a single container and stop tracking it."""
        try:
            return self._destroy(self._client_or_none(), container_id)
        finally:
            self.unregister(container_id)

    def install_signal_handlers(self) -> None:
        """Install the sweep handler for termination signals once."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Signal handlers can only be installed from the main thread")
            return

        with self._lock:
            if self._signals_installed:
                return
            self._signals_installed = True
            for signum in handled_signals():
                try:
                    self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)
                except (OSError, ValueError) as e:
                    logger.debug(f"Cannot handle signal {signum}: {e}")
        logger.debug("Installed container cleanup signal handlers")

    def _restore_signal_handlers(self) -> None:
        for signum, previous in self._previous_handlers.items():
            try:
                signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
            except (OSError, ValueError) as e:
                logger.debug(f"Cannot restore handler for signal {signum}: {e}")
        self._previous_handlers.clear()
        with self._lock:
            self._signals_installed = not self._install_hooks

    def _handle_signal(self, signum, frame) -> None:
        """Sweep, notify cancel listeners, then re-raise the signal.

        With active listeners the re-raise is deferred until their owner
        calls ``reraise_pending`` after unwinding.
        """
        logger.warning(f"Received signal {signum}, destroying tracked containers")
        listeners: List[CancelListener] = []
        try:
            self.sweep()
            with self._lock:
                listeners = list(self._cancel_listeners)
            for listener in listeners:
                try:
                    listener(signum)
                except Exception as e:
                    logger.error(f"Cancel listener failed: {e}", exc_info=True)
        except Exception as e:
            logger.error(f"Signal cleanup failed: {e}", exc_info=True)

        if listeners:
            self._pending_signal = signum
        else:
            self._reraise(signum)

    def _reraise(self, signum: int) -> None:
        self._restore_signal_handlers()
        signal.raise_signal(signum)

    def pending_signal(self) -> Optional[int]:
        """Signal received while listeners were active, if any."""
        return self._pending_signal

    def reraise_pending(self) -> None:
        """Re-raise a deferred signal with its previous disposition."""
        signum, self._pending_signal = self._pending_signal, None
        if signum is not None:
            self._reraise(signum)

    def close(self) -> None:
        """Sweep and release process hooks."""
        if self._closed:
            return
        self._closed = True
        self.sweep()
        if self._previous_handlers:
            self._restore_signal_handlers()
        if self._install_hooks:
            atexit.unregister(self.sweep)
        self._finalizer.detach()


_registry: Optional[ContainerRegistry] = None
_registry_lock = threading.Lock()


def get_registry(config: Optional[DockerConfig] = None) -> ContainerRegistry:
    """Return the process-wide container registry, creating it on first use."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = ContainerRegistry.from_config(config or DockerConfig())
            _registry.install_signal_handlers()
        return _registry


def reset_registry() -> None:
    """Close and forget the process-wide registry."""
    global _registry
    with _registry_lock:
        if _registry is not None:
            _registry.close()
        _registry = None
