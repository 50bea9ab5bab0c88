import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from app.utils.config import settings


logger = logging.getLogger(__name__)


@dataclass
class CollegeDomains:
    """Allow-list of college email domains and their institution names."""
    allowed_domains: list[str] = field(default_factory=list)
    institution_mapping: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path) -> "CollegeDomains":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            # Fail closed: an unreadable list accepts no domain
            logger.error("Failed to load college domains from %s: %s", path, exc)
            return cls()
        return cls(
            allowed_domains=[str(d).lower() for d in data.get("allowedDomains", [])],
            institution_mapping={str(k).lower(): v for k, v in (data.get("institutionMapping") or {}).items()},
        )

    def is_allowed(self, domain: str) -> bool:
        return any(domain == allowed or domain.endswith("." + allowed) for allowed in self.allowed_domains)

    def institution_for(self, domain: str) -> str:
        return self.institution_mapping.get(domain) or ".".join(domain.split(".")[-2:]).upper()


_domains: CollegeDomains | None = None


def load_college_domains(path: str | Path | None = None) -> CollegeDomains:
    global _domains
    _domains = CollegeDomains.from_file(path or settings.college_domains_file)
    logger.info("Loaded %d college domains", len(_domains.allowed_domains))
    return _domains


def get_college_domains() -> CollegeDomains:
    if _domains is None:
        return load_college_domains()
    return _domains


def reset_college_domains() -> None:
    global _domains
    _domains = None
