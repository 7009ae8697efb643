import sys
import os
import pytest

# Add backend to path so we can import modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ai_cache.policy import is_cacheable
from ai_cache.store import CacheType


def test_general_question_is_cacheable():
    assert is_cacheable(CacheType.CHAT, "How do I treat wheat rust", {"season": "Kharif"})
    assert is_cacheable("planning", "crop plan state_punjab season_rabi", None)


@pytest.mark.parametrize("query", ["short", "x" * 501])
def test_length_bounds(query):
    assert not is_cacheable(CacheType.CHAT, query, None)


def test_length_bounds_are_inclusive():
    assert is_cacheable(CacheType.CHAT, "wheat rust", None)
    assert is_cacheable(CacheType.CHAT, "w" * 500, None)


@pytest.mark.parametrize("query", [
    "what is my field's status today",
    "Should I irrigate My Farm this season",
    "Is rain expected tomorrow for sowing",
    "aphids appeared LAST WEEK on mustard",
    "मेरा खेत सूखा है क्या करें",
    "मेरी फसल पीली पड़ रही है",
])
def test_personal_and_temporal_queries_are_rejected(query):
    assert not is_cacheable(CacheType.CHAT, query, None)


def test_diagnosis_is_never_cacheable():
    assert not is_cacheable(CacheType.DIAGNOSIS, "brown spots on rice leaves", None)
    assert not is_cacheable("diagnosis", "brown spots on rice leaves", None)


@pytest.mark.parametrize("cache_type,query,context", [
    ("weather", "How do I treat wheat rust", None),
    (CacheType.CHAT, None, None),
    (CacheType.CHAT, 12345678901, None),
    (CacheType.CHAT, "How do I treat wheat rust", "kharif"),
    (CacheType.CHAT, "How do I treat wheat rust", ["season"]),
])
def test_malformed_input_degrades_to_not_cacheable(cache_type, query, context):
    assert is_cacheable(cache_type, query, context) is False
