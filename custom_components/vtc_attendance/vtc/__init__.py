"""VTC timetable and attendance library.

Keep package import lightweight; import submodules explicitly where needed.
"""

__version__ = "1.0.0"
__all__ = [
	"client",
	"clock",
	"keys",
	"models",
	"terms",
	"utils",
	"exceptions",
	"store",
	"sync",
	"reconcile",
	"dedupe",
	"stats",
	"export",
	"service",
]
