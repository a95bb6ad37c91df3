from smo.domain.models import reduction_percent, should_replace

__all__ = ["should_replace", "reduction_percent"]
