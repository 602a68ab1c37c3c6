# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


@dataclass(frozen=True)
class Settings:
    home: Path
    cache_dir: Path
    artifact_dir: Path
    publish_dir: Path
    pages_host: str                 # directory | http
    pages_api_url: Optional[str]
    pages_base_url: Optional[str]   # overrides https://<owner>.github.io/<repo>/
    step_poll_seconds: float
    cache_keep: int

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ
        home = Path(env.get("PAGESFLOW_HOME", ".pagesflow"))
        return cls(
            home=home,
            cache_dir=Path(env.get("PAGESFLOW_CACHE_DIR", str(home / "cache"))),
            artifact_dir=Path(env.get("PAGESFLOW_ARTIFACT_DIR", str(home / "artifacts"))),
            publish_dir=Path(env.get("PAGESFLOW_PUBLISH_DIR", str(home / "published"))),
            pages_host=env.get("PAGESFLOW_PAGES_HOST", "directory"),
            pages_api_url=env.get("PAGESFLOW_PAGES_API_URL") or None,
            pages_base_url=env.get("PAGESFLOW_PAGES_BASE_URL") or None,
            step_poll_seconds=float(env.get("PAGESFLOW_STEP_POLL_SECONDS", "0.2")),
            cache_keep=int(env.get("PAGESFLOW_CACHE_KEEP", "3")),
        )
