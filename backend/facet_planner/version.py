"""Version information for the backend."""

VERSION = "1.0.0"
BUILD_DATE = "2026-10-19"

def get_version_info():
    """Get version information as a dictionary."""
    return {
        "version": VERSION,
        "build_date": BUILD_DATE,
        "component": "facet-planner"
    }
