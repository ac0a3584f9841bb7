"""Engine tunables, gathered from ``caseflow.config`` into one injectable object."""

from dataclasses import dataclass, field

from caseflow import config


@dataclass(frozen=True)
class MatchSettings:
    name_similarity_threshold: float = 0.3
    name_match_weight: float = 0.45
    search_result_limit: int = 50
    exact_match_weights: dict[str, float] = field(
        default_factory=lambda: dict(config.EXACT_MATCH_WEIGHTS)
    )
    cluster_grouping: str = "per_field"
    cluster_scan_batch_size: int = 1000
    cluster_default_page_size: int = 20
    cluster_max_page_size: int = 100
    auth_secret: str = "dev-only-change-me"
    search_token_ttl_seconds: int = 3600
    require_search_token: bool = False

    def __post_init__(self):
        if self.cluster_grouping not in ("per_field", "coalesce"):
            raise ValueError(
                f"cluster_grouping must be 'per_field' or 'coalesce', got {self.cluster_grouping!r}"
            )
        if not 0.0 <= self.name_similarity_threshold < 1.0:
            raise ValueError("name_similarity_threshold must be in [0, 1)")
        if self.search_result_limit < 1 or self.cluster_scan_batch_size < 1:
            raise ValueError("search_result_limit and cluster_scan_batch_size must be positive")

    @classmethod
    def from_env(cls) -> "MatchSettings":
        return cls(
            name_similarity_threshold=config.NAME_SIMILARITY_THRESHOLD,
            name_match_weight=config.NAME_MATCH_WEIGHT,
            search_result_limit=config.SEARCH_RESULT_LIMIT,
            exact_match_weights=dict(config.EXACT_MATCH_WEIGHTS),
            cluster_grouping=config.CLUSTER_GROUPING,
            cluster_scan_batch_size=config.CLUSTER_SCAN_BATCH_SIZE,
            cluster_default_page_size=config.CLUSTER_DEFAULT_PAGE_SIZE,
            cluster_max_page_size=config.CLUSTER_MAX_PAGE_SIZE,
            auth_secret=config.AUTH_SECRET,
            search_token_ttl_seconds=config.SEARCH_TOKEN_TTL_SECONDS,
            require_search_token=config.REQUIRE_SEARCH_TOKEN,
        )
