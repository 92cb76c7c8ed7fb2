"""Available PostgreSQL versions for new projects."""

from typing import Dict, List

from pgd.constants import DOCKERHUB_TAGS_URL, FALLBACK_VERSIONS
from pgd.models import PostgresVersion


class VersionCatalog:
    """Lists the newest minor release of each PostgreSQL major on Docker Hub."""

    MAX_PAGES = 3

    def __init__(self, logger, requests_module, url: str = DOCKERHUB_TAGS_URL, timeout: float = 10.0):
        self.logger = logger
        self.requests = requests_module
        self.url = url
        self.timeout = timeout

    @staticmethod
    def fallback_versions() -> List[PostgresVersion]:
        return sorted(PostgresVersion.parse(tag) for tag in FALLBACK_VERSIONS)

    def available_versions(self) -> List[PostgresVersion]:
        try:
            tags = self._fetch_tags()
        except self.requests.RequestException as exc:
            self.logger.warning("Could not query %s, using built-in versions: %s", self.url, exc)
            return self.fallback_versions()
        except (KeyError, TypeError, ValueError) as exc:
            self.logger.warning("Unexpected response from %s, using built-in versions: %s", self.url, exc)
            return self.fallback_versions()

        newest: Dict[int, PostgresVersion] = {}
        for tag in tags:
            try:
                parsed = PostgresVersion.parse(tag)
            except ValueError:
                continue
            current = newest.get(parsed.major)
            if current is None or parsed > current:
                newest[parsed.major] = parsed

        if not newest:
            self.logger.warning("No usable tags found at %s, using built-in versions.", self.url)
            return self.fallback_versions()

        return sorted(newest.values())

    def latest(self) -> PostgresVersion:
        return self.available_versions()[-1]

    def _fetch_tags(self) -> List[str]:
        tags: List[str] = []
        url = self.url
        params = {"page_size": 100, "ordering": "last_updated"}

        for _ in range(self.MAX_PAGES):
            response = self.requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
            tags.extend(str(item["name"]) for item in payload["results"])

            url = payload.get("next")
            params = None
            if not url:
                break

        self.logger.debug("Fetched %s postgres tags", len(tags))
        return tags
