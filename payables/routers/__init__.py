"""Router package exports."""
from . import batches, payables

__all__ = [
	"batches",
	"payables",
]
