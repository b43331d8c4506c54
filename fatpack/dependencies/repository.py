import logging
import requests
from pathlib import Path
from typing import Iterable, List, Optional

from fatpack.config import effective_settings as config
from fatpack.dependencies.coordinates import DependencyCoordinate
from fatpack.errors import ResolutionError

log = logging.getLogger(__name__)


class LocalRepository:
    """
    Resolves dependency coordinates to files in a group/name/version directory
    layout, optionally downloading missing files from remote repositories.
    """

    def __init__(self, root: Optional[Path] = None, remote_urls: Optional[Iterable[str]] = None):
        """
        :param root: The repository root, defaults to the configured `LOCAL_REPOSITORY`.
        :param remote_urls: Base URLs of remote repositories using the same layout.
        """
        self.root = Path(root or config.LOCAL_REPOSITORY).expanduser()
        urls = config.REMOTE_REPOSITORIES if remote_urls is None else remote_urls
        self.remote_urls: List[str] = [u.rstrip("/") for u in urls]

    def resolve(self, coordinate: DependencyCoordinate) -> Path:
        """
        Returns the local path of the artifact identified by `coordinate`.

        :raises ResolutionError: If the artifact is neither present locally nor downloadable.
        """
        local_path = self.root / coordinate.repository_path
        if local_path.is_file():
            return local_path.resolve()

        for base_url in self.remote_urls:
            if self._download_file(f"{base_url}/{coordinate.repository_path}", local_path):
                log.info(f"Resolved {coordinate} from {base_url}")
                return local_path.resolve()

        raise ResolutionError(f"Unable to resolve: {coordinate}")

    def _download_file(self, url: str, dest_path: Path) -> bool:
        """Downloads a file into the repository, leaving nothing behind on failure."""
        log.debug(f"Downloading from {url}...")
        temp_path = dest_path.with_name(dest_path.name + ".part")
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            headers = {"User-Agent": "fatpack/1.0"}
            with requests.get(url, stream=True, timeout=config.DOWNLOAD_TIMEOUT, headers=headers) as r:
                r.raise_for_status()
                with open(temp_path, "wb") as f:
                    for chunk in r.iter_content(chunk_size=config.DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
            temp_path.replace(dest_path)
            return True
        except (requests.RequestException, OSError) as e:
            log.debug(f"Download of {url} failed: {e}")
            return False
        finally:
            temp_path.unlink(missing_ok=True)
