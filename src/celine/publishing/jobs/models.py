from enum import Enum

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.failed})


class JobType(str, Enum):
    # Content pipeline stages; their handlers are registered by the host app
    ai_text_generation = "ai_text_generation"
    ai_image_generation = "ai_image_generation"
    carousel_creation = "carousel_creation"
    scheduled_publish = "scheduled_publish"
    web_scraping = "web_scraping"
    document_embedding = "document_embedding"
    wizard_narratives = "wizard_narratives"
    wizard_generation = "wizard_generation"
    wizard_image_generation = "wizard_image_generation"
    wizard_thumbnail_generation = "wizard_thumbnail_generation"
    article_research = "article_research"
    article_outline = "article_outline"
    article_section_production = "article_section_production"
    article_assembly = "article_assembly"
    article_seo_geo_check = "article_seo_geo_check"
    article_optimization = "article_optimization"
    article_interlinking = "article_interlinking"
    article_metadata = "article_metadata"
    article_cross_format = "article_cross_format"
    site_intelligence_crawl = "site_intelligence_crawl"
    site_intelligence_analyze = "site_intelligence_analyze"
    article_extension_diagnose = "article_extension_diagnose"
    article_extension_expand = "article_extension_expand"

    # Social publishing
    social_publish_instagram = "social_publish_instagram"
    social_publish_facebook = "social_publish_facebook"
    social_metrics_fetch = "social_metrics_fetch"


class PublishJobPayload(BaseModel):
    published_post_id: str
    user_id: str


class MetricsJobPayload(BaseModel):
    user_id: str | None = None  # None = every user
    published_post_id: str | None = None
    limit: int = Field(default=50, ge=1, le=500)
