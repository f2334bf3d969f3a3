import yaml
import os

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "..", "config.yaml")

def load_config(path: str | None = None) -> dict:
    """Read config.yaml, or the file named by DEMO_CONFIG when no path is given."""
    path = path or os.environ.get("DEMO_CONFIG", DEFAULT_CONFIG_PATH)
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}
