from __future__ import annotations

import shutil
import sys
from pathlib import Path

import pytest

# uv/pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from provenance.core.config import Config  # noqa: E402
from provenance.core.database import Database  # noqa: E402
from provenance.core.metrics import MetricsRegistry  # noqa: E402
from provenance.integrations.checkpoint import SignedCheckpointSink  # noqa: E402
from provenance.ledger import Ledger  # noqa: E402
from tests.unit._ledger_helpers import grant_actors  # noqa: E402


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture()
def test_config(temp_dir: Path) -> Config:
    """Config fixture that points data_dir to a temp directory."""

    cfg_dst_dir = temp_dir / "config"
    cfg_dst_dir.mkdir(parents=True, exist_ok=True)

    # copy default + presets
    shutil.copy2(REPO_ROOT / "config" / "default.yaml", cfg_dst_dir / "default.yaml")
    shutil.copytree(REPO_ROOT / "config" / "presets", cfg_dst_dir / "presets")

    c = Config.from_yaml(cfg_dst_dir / "default.yaml")
    ledger_cfg = c.ledger.model_copy(update={"lock_timeout_seconds": 2.0})
    anchor_cfg = c.anchor.model_copy(update={"backoff_base_seconds": 0.0, "backoff_max_seconds": 0.0})
    return c.model_copy(
        update={"data_dir": temp_dir / "data", "config_dir": cfg_dst_dir, "ledger": ledger_cfg, "anchor": anchor_cfg}
    )


@pytest.fixture()
def db(test_config: Config):
    d = Database(test_config.db_path)
    yield d
    d.close()


@pytest.fixture()
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture()
def ledger(db: Database, test_config: Config, metrics: MetricsRegistry) -> Ledger:
    """Ledger with the standard actors registered and a local checkpoint sink."""

    lg = Ledger.from_config(db, test_config, sink=SignedCheckpointSink(db), metrics=metrics)
    grant_actors(lg)
    return lg


@pytest.fixture()
def api_app(test_config: Config, temp_dir: Path):
    """API app over a temp database, standard actors granted, bearer token set."""

    from tests.unit._api_test_client import make_app

    app = make_app(test_config, temp_dir / "api.db")
    yield app
    app.state.db.close()
