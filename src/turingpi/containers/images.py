"""Worker image provisioning."""

import asyncio
import logging
import tempfile
from pathlib import Path

import docker
from docker.errors import BuildError, DockerException, ImageNotFound
from docker.utils import parse_repository_tag

from turingpi.errors import ImageUnavailable
from turingpi.models.config import DockerConfig
from turingpi.utils.templates import render_template


logger = logging.getLogger(__name__)

WORKER_PACKAGES = [
    "kpartx",
    "xz-utils",
    "sudo",
    "parted",
    "e2fsprogs",
    "dosfstools",
    "mount",
    "mawk",
    "coreutils",
    "util-linux",
]

WORKER_DOCKERFILE = """\
FROM {{ base_image }}

RUN apt-get update && \\
    DEBIAN_FRONTEND=noninteractive apt-get install -y --no-install-recommends \\
{%- for package in packages %}
        {{ package }}{% if not loop.last %} \\{% endif %}
{%- endfor %}
 && rm -rf /var/lib/apt/lists/*

WORKDIR /workspace

CMD ["sleep", "infinity"]
"""


def render_worker_dockerfile(base_image: str) -> str:
    """Render the Dockerfile of the privileged tooling image."""
    return render_template(WORKER_DOCKERFILE, base_image=base_image, packages=WORKER_PACKAGES)


def _image_exists(client: docker.DockerClient, image: str) -> bool:
    try:
        client.images.get(image)
        return True
    except ImageNotFound:
        return False


def _build_worker(client: docker.DockerClient, image: str, base_image: str) -> None:
    # Scoped build context, removed on every exit path
    with tempfile.TemporaryDirectory(prefix="turingpi-build-") as context_dir:
        dockerfile = Path(context_dir) / "Dockerfile"
        dockerfile.write_text(render_worker_dockerfile(base_image))
        _, build_logs = client.images.build(path=context_dir, tag=image, rm=True)
        for chunk in build_logs:
            line = chunk.get("stream", "").strip() if isinstance(chunk, dict) else ""
            if line:
                logger.debug(f"[build] {line}")


def _pull(client: docker.DockerClient, image: str) -> None:
    repository, tag = parse_repository_tag(image)
    for message in client.api.pull(repository, tag=tag or "latest", stream=True, decode=True):
        if "error" in message:
            raise ImageUnavailable(image, message["error"])
        status = message.get("status")
        if status:
            logger.debug(f"[pull] {status} {message.get('progress', '')}".rstrip())
    client.images.get(image)


def ensure_image_sync(client: docker.DockerClient, image: str, config: DockerConfig) -> None:
    """Make ``image`` available locally: reuse, build or pull it."""
    try:
        if _image_exists(client, image):
            logger.debug(f"Image {image} already present")
            return

        if image == config.worker_image:
            logger.info(f"Building worker image {image} from {config.base_image}")
            _build_worker(client, image, config.base_image)
        else:
            logger.info(f"Pulling image {image}")
            _pull(client, image)

    except BuildError as e:
        raise ImageUnavailable(image, f"build failed: {e.msg}") from e
    except DockerException as e:
        raise ImageUnavailable(image, str(e)) from e

    logger.info(f"Image {image} is ready")


async def ensure_image(client: docker.DockerClient, image: str, config: DockerConfig) -> None:
    """Async wrapper around :func:`ensure_image_sync`."""
    await asyncio.to_thread(ensure_image_sync, client, image, config)
