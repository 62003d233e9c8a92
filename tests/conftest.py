"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest
import structlog

from state_router.config import Settings
from state_router.engine.baseline import baseline_to_vector
from state_router.engine.gates import levelize_state_vec
from state_router.engine.models import BaselineRatings, GateLevels, StateVector
from state_router.engine.pipeline import StateRouter


@pytest.fixture(autouse=True, scope="session")
def _quiet_logs():
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL))
    yield
    structlog.reset_defaults()


# Worked example: low mood, drained, tense, not in control.
@pytest.fixture
def scenario_a_ratings() -> BaselineRatings:
    return BaselineRatings(mood=2, energy=2, tension=6, clarity=3, control=2, social=3)


# Everything at the midpoint except clarity at its minimum.
@pytest.fixture
def scenario_c_ratings() -> BaselineRatings:
    return BaselineRatings(clarity=1)


@pytest.fixture
def midpoint_ratings() -> BaselineRatings:
    return BaselineRatings()


@pytest.fixture
def scenario_a_vector(scenario_a_ratings: BaselineRatings) -> StateVector:
    return baseline_to_vector(scenario_a_ratings)


@pytest.fixture
def scenario_a_levels(scenario_a_vector: StateVector) -> GateLevels:
    return levelize_state_vec(scenario_a_vector)


@pytest.fixture
def scenario_c_vector(scenario_c_ratings: BaselineRatings) -> StateVector:
    return baseline_to_vector(scenario_c_ratings)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def router(settings: Settings) -> StateRouter:
    return StateRouter(settings)
