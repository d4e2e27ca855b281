from sqlalchemy import create_engine, inspect

from gio import main
from gio.rules import RankResolver
from gio.tables import IncentiveConfig


def test_startup_wires_resolver_and_incentive_config(monkeypatch):
    engine = create_engine("sqlite:///:memory:")
    monkeypatch.setattr(main, "engine", engine)

    main.on_startup()

    state = main.app.state
    assert isinstance(state.resolver, RankResolver)
    assert isinstance(state.incentive_config, IncentiveConfig)
    assert not hasattr(state, "rank_tables")
    assert state.resolver.resolve(400, "live", "global").rank == 1
    assert "coordinators" in inspect(engine).get_table_names()
