"""ORM model package; importing it registers all models with Base.metadata."""

from mediaforge.models.generated_asset import GeneratedAsset

__all__ = ["GeneratedAsset"]
