import json
from decimal import Decimal

import pytest

from sandwich_finder import pipeline
from sandwich_finder.config import load_settings
from sandwich_finder.errors import ConfigError
from sandwich_finder.storage import (
    ANALYSIS_FILE,
    SANDWICHES_FILE,
    SLOT_LEADERS_FILE,
    ArtifactStore,
)

from conftest import SANDWICHER, CountingPacer, FakeRegistry, FakeRpc, make_tx

AUTH = "StakeAuth1111"
EPOCHS = {"slotsPerEpoch": 1000, "firstNormalEpoch": 0, "firstNormalSlot": 0, "warmup": False}


def _settings(tmp_path, **extra):
    env = {
        "RPC_URL": "http://rpc.invalid",
        "SANDWICHER_ADDRESS": SANDWICHER,
        "DATA_DIR": str(tmp_path / "data"),
        "STAKE_AUTHORITY": AUTH,
        "STAKE_LOOKUP_DELAY": "0",
    }
    env.update(extra)
    return load_settings(env)


def _scenario_rpc():
    """Two legs at delta 1000, two at delta 2000 of which one failed on chain."""
    page = [
        {"signature": "back", "slot": 500, "err": None},
        {"signature": "lone", "slot": 500, "err": None},
        {"signature": "failed", "slot": 500, "err": {"InstructionError": [2, {"Custom": 30}]}},
        {"signature": "front", "slot": 500, "err": None},
    ]
    transactions = {
        "front": make_tx(500, 50_000, 49_000),
        "back": make_tx(500, 49_500, 50_500),
        "lone": make_tx(500, 40_000, 42_000),
        "failed": make_tx(500, 42_000, 40_000),
    }
    return FakeRpc(
        pages=[page],
        transactions=transactions,
        epoch_schedule=EPOCHS,
        leader_schedules={0: {"LeaderA": [500], "LeaderB": [501]}},
    )


def test_end_to_end_single_bracket(tmp_path, capsys):
    settings = _settings(tmp_path)
    store = ArtifactStore(settings.data_dir)
    rpc = _scenario_rpc()
    registry = FakeRegistry(
        [
            {"identity": "LeaderB", "vote_identity": "voteB", "activated_stake": 50},
            {"identity": "LeaderA", "vote_identity": "voteA", "activated_stake": 10},
        ],
        {"voteA": [{"stake_authority": AUTH, "active_stake": 2_000_000_000}]},
    )

    report = pipeline.run_all(settings, store, rpc, registry, CountingPacer())

    # the failed leg never reaches extraction
    assert "failed" not in rpc.tx_calls
    assert store.load_sandwiches() == {500: [("back", "front")]}
    assert report.total_sandwiches == 1
    assert report.validator_details["LeaderA"].delegated_stake == Decimal(2)
    assert registry.stake_calls == ["voteA"]

    written = json.loads((settings.data_dir / ANALYSIS_FILE).read_text())
    assert written["validatorDetails"]["LeaderA"] == {
        "voteAccount": "voteA",
        "delegatedStake": 2.0,
        "sandwichCount": 1,
    }
    assert json.loads((settings.data_dir / SLOT_LEADERS_FILE).read_text())["500"] == "LeaderA"
    assert "Total sandwiches: 1" in capsys.readouterr().out


def test_stages_resume_from_artifacts(tmp_path):
    settings = _settings(tmp_path)
    store = ArtifactStore(settings.data_dir)
    rpc = _scenario_rpc()

    pipeline.run_collect(settings, store, rpc)
    sandwiches = pipeline.run_filter(settings, store, rpc)
    leaders = pipeline.run_leaders(settings, store, rpc)

    assert list(store.load_signatures()) == ["back", "lone", "front"]
    assert sandwiches == {500: [("back", "front")]}
    assert leaders["500"] == "LeaderA"


def test_no_sandwiches_skips_attribution(tmp_path, capsys):
    settings = _settings(tmp_path)
    store = ArtifactStore(settings.data_dir)
    # leftovers from an earlier run that did find brackets
    store.save_slot_leaders({"9": "OldLeader"})
    store.save_analysis({"totalSandwiches": 3})
    rpc = FakeRpc(
        pages=[[{"signature": "only", "slot": 9, "err": None}]],
        transactions={"only": make_tx(9, 10, 5)},
    )
    registry = FakeRegistry([], {})

    assert pipeline.run_all(settings, store, rpc, registry) is None
    assert rpc.leader_calls == []
    assert not (settings.data_dir / SLOT_LEADERS_FILE).exists()
    assert not (settings.data_dir / ANALYSIS_FILE).exists()
    assert pipeline.NO_SANDWICHES in capsys.readouterr().out


def test_check_config_per_stage(tmp_path):
    bare = load_settings({"DATA_DIR": str(tmp_path)})
    pipeline.check_config(bare, "analyze")
    for stage in ("collect", "filter", "leaders", "run"):
        with pytest.raises(ConfigError):
            pipeline.check_config(bare, stage)


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("RPC_URL", "SANDWICHER_ADDRESS", "DATA_DIR", "STAKE_AUTHORITY"):
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    return tmp_path


def test_main_fails_without_rpc_url(clean_env, caplog):
    assert pipeline.main(["collect", "--data-dir", str(clean_env / "d")]) == 1
    assert "RPC_URL" in caplog.text


def test_main_fails_when_prior_artifacts_missing(clean_env, caplog):
    assert pipeline.main(["analyze", "--data-dir", str(clean_env / "d")]) == 1
    assert SANDWICHES_FILE in caplog.text


def test_main_exits_cleanly_without_sandwiches(clean_env, monkeypatch, capsys):
    data_dir = clean_env / "d"
    ArtifactStore(data_dir).save_sandwiches({})
    monkeypatch.setenv("RPC_URL", "http://rpc.invalid")

    assert pipeline.main(["leaders", "--data-dir", str(data_dir)]) == 0
    assert pipeline.NO_SANDWICHES in capsys.readouterr().out


def test_main_rejects_bad_batch_size(clean_env):
    assert pipeline.main(["filter", "--batch-size", "0"]) == 1
