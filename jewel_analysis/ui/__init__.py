from . import analysis_form, batches, dashboard, manufacturers, reference_tables, settings

__all__ = [
	"dashboard",
	"settings",
	"manufacturers",
	"reference_tables",
	"analysis_form",
	"batches",
]
