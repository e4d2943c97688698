"""Tests for the Robot facade."""

import jax.random as jrandom
import numpy as np
import pytest

from jax_proximity import ConfigurationError, DimensionMismatchError, Robot
from jax_proximity.config import StatisticsSettings
from jax_proximity.proximity.error_models import LieAlgErrorModels
from jax_proximity.proximity.link_shapes import LinkShapeMode, LinkShapeRep, LinkShapesModule
from jax_proximity.proximity.proxima import DistanceMode, ProximaBudget
from jax_proximity.proximity.statistics import (
    SkipReason,
    SkipsModule,
    SkipTable,
    build_distance_statistics,
    build_skips,
)
from jax_proximity.transforms import LieAlgMode

FULL, HULL = LinkShapeMode.FULL, LinkShapeRep.CONVEX_HULL
# A margin no pair can clear keeps the skips rule-based
SETTINGS = StatisticsSettings(num_samples=20, safety_margin=10.0)


@pytest.fixture(scope="module")
def statistics(robot_model, link_shapes):
    return build_distance_statistics(robot_model, link_shapes, SETTINGS, modes=[FULL], reps=[HULL])


@pytest.fixture(scope="module")
def robot(urdf_path, robot_model, link_shapes, statistics):
    skips = build_skips(robot_model, link_shapes, statistics, SETTINGS)
    error_models = LieAlgErrorModels.uniform(link_shapes, modes=[FULL], reps=[HULL], lie_modes=[LieAlgMode.STANDARD])
    return Robot.from_urdf(urdf_path, skips=skips, statistics=statistics, error_models=error_models)


def test_from_urdf(robot):
    assert robot.num_dofs == 6
    assert robot.model.link_names[-1] == "tool_frame"
    assert len(robot.get_shapes(FULL, HULL)) == 7


def test_self_distance_skips_adjacent_pairs(robot):
    link_poses = robot.fk(np.zeros(6))
    results = robot.self_distance(link_poses)

    skips = robot.get_skips(FULL, HULL)
    assert len(results) == int(np.sum(np.triu(~skips, 1)))
    reasons = robot.skips.get_table(FULL, HULL).reason_array()
    for r in results:
        assert reasons[r.shape_indices] == SkipReason.NONE
        # shapes k and k + 1 sit on parent and child links
        assert r.shape_indices[1] - r.shape_indices[0] > 1


def test_fk_checks_dimension(robot):
    assert robot.fk(np.zeros(6)).shape == (8, 4, 4)
    with pytest.raises(DimensionMismatchError):
        robot.fk(np.zeros(4))
    with pytest.raises(DimensionMismatchError):
        robot.get_self_proxima1(np.zeros(7))


def test_sample_configuration(robot):
    qs = robot.sample_configuration(jrandom.PRNGKey(0), 5)
    assert qs.shape == (5, 6)
    assert np.all(qs >= np.asarray(robot.model.lower_limits))
    assert np.all(qs <= np.asarray(robot.model.upper_limits))


def test_exact_queries(robot, colliding_config):
    assert not robot.self_intersect(robot.fk(np.zeros(6)))
    assert robot.self_intersect(robot.fk(colliding_config))

    contact = robot.self_contact(robot.fk(np.zeros(6)), max_distance=0.09)
    # link3/link5 are 0.08 apart at zero; link4/link6 are 0.10 apart
    assert contact.num_ground_truth_checks == int(np.sum(np.triu(~robot.get_skips(FULL, HULL), 1)))
    assert [r.shape_indices for r in contact.outputs] == [(3, 5)]


def test_proxima_queries(robot, colliding_config):
    cache = robot.get_self_proxima1(np.zeros(6))
    result = robot.self_intersect_proxima(cache, robot.fk(np.zeros(6)))
    assert result.intersect is False
    assert robot.self_intersect_proxima(cache, robot.fk(colliding_config)).intersect is True

    cache = robot.get_self_proxima2(np.zeros(6))
    result = robot.self_proximity_proxima(cache, robot.fk(np.zeros(6)), budget=ProximaBudget.accuracy(1e-3))
    assert result.proximity_value > 0.0

    scaled = robot.self_proximity_proxima(cache, robot.fk(np.zeros(6)), distance_mode=DistanceMode.AVERAGE)
    averages = robot.statistics.get(FULL, HULL).averages_array()
    for raw, output in zip(result.outputs, scaled.outputs):
        expected = raw.approximate_distance / max(averages[output.shape_indices], 1e-5)
        np.testing.assert_allclose(output.approximate_distance, expected, rtol=1e-9)


def test_cache_used_with_other_mode(robot):
    cache = robot.get_self_proxima1(np.zeros(6))
    with pytest.raises(ConfigurationError):
        robot.self_intersect_proxima(cache, robot.fk(np.zeros(6)), rep=LinkShapeRep.OBB)


def test_missing_error_models(urdf_path, robot):
    with pytest.raises(ConfigurationError):
        robot.get_self_proxima2(np.zeros(6), lie_mode=LieAlgMode.PSEUDO)
    with pytest.raises(ConfigurationError):
        Robot.from_urdf(urdf_path).get_self_proxima2(np.zeros(6))


def test_without_tables(urdf_path):
    robot = Robot.from_urdf(urdf_path)
    assert robot.get_skips(FULL, HULL) is None
    # Every pair is queried, adjacent ones included
    assert len(robot.self_distance(robot.fk(np.zeros(6)))) == 21
    with pytest.raises(ConfigurationError):
        robot.self_proximity_proxima(robot.get_self_proxima1(np.zeros(6)), robot.fk(np.zeros(6)),
                                     distance_mode=DistanceMode.AVERAGE)


def test_advisory_skips_warn(robot_model, link_shapes, caplog):
    reasons = np.zeros((7, 7), dtype=np.int64)
    np.fill_diagonal(reasons, SkipReason.SAME_LINK)
    reasons[0, 6] = reasons[6, 0] = SkipReason.NEVER_IN_COLLISION
    skips = SkipsModule(safety_margin=0.05, entries={"full/convex_hull": SkipTable(reasons=reasons.tolist())})

    with caplog.at_level("WARNING"):
        Robot(robot_model, link_shapes, skips=skips)
    assert "never verified" in caplog.text

    caplog.clear()
    verified = SkipsModule(safety_margin=0.05,
                           entries={"full/convex_hull": SkipTable(reasons=reasons.tolist(), verified=True)})
    with caplog.at_level("WARNING"):
        Robot(robot_model, link_shapes, skips=verified)
    assert "never verified" not in caplog.text


def test_link_shapes_must_match_chain(robot_model):
    link_shapes = LinkShapesModule(link_names=("base",), shapes={}, shape_to_link_indices={})
    with pytest.raises(ConfigurationError):
        Robot(robot_model, link_shapes)
