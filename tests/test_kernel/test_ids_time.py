"""
Tests for id generation and time providers
"""

import re
from datetime import datetime, timedelta, timezone

from lifelines_core.kernel.ids import (
    LICENSE_ALPHABET,
    SequentialIdFactory,
    generate_id,
    generate_license_id,
    generate_token,
    is_local_token,
)
from lifelines_core.kernel.time import FixedTimeProvider, RealTimeProvider

LICENSE_PATTERN = re.compile(r"^LIC-[ABCDEFGHJKLMNPQRSTUVWXYZ23456789]{8}$")


def test_generate_id_has_prefix_and_fixed_length():
    entity_id = generate_id("proj")
    assert re.fullmatch(r"proj_[0-9a-f]{22}", entity_id)


def test_generate_id_is_unique():
    ids = {generate_id("bid") for _ in range(500)}
    assert len(ids) == 500


def test_license_id_uses_unambiguous_alphabet():
    for _ in range(200):
        assert LICENSE_PATTERN.match(generate_license_id())
    for confusable in "01IO":
        assert confusable not in LICENSE_ALPHABET


def test_local_tokens_are_distinguishable():
    local = generate_token(local=True)
    remote = generate_token()
    assert is_local_token(local)
    assert not is_local_token(remote)
    assert not is_local_token(None)


def test_sequential_id_factory_counts_per_prefix():
    factory = SequentialIdFactory()
    assert factory.generate("proj") == "proj_0001"
    assert factory.generate("proj") == "proj_0002"
    assert factory.generate("bid") == "bid_0001"


def test_fixed_time_provider_only_moves_when_told():
    start = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    provider = FixedTimeProvider(start)
    assert provider.now() == start
    provider.advance_seconds(30)
    provider.advance_days(1)
    assert provider.now() == start + timedelta(days=1, seconds=30)
    provider.set_time(start)
    assert provider.now() == start


def test_real_time_provider_is_timezone_aware():
    assert RealTimeProvider().now().tzinfo is not None
