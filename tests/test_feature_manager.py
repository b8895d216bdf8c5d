import numpy as np
import pytest

from vioinit.config import INIT_DEPTH
from vioinit.feature_manager import FeatureManager, FeaturePerFrame, FeaturePerId


def obs(x, y, z=1.0):
    return np.array([x, y, z, 0.0, 0.0, 0.0, 0.0])


def make_manager(window_size=10, min_parallax=0.1):
    rs = [np.eye(3) for _ in range(window_size + 1)]
    return FeatureManager(rs, window_size=window_size, min_parallax=min_parallax)


def feature(fid, start, points):
    f = FeaturePerId(fid, start)
    f.feature_per_frame = [FeaturePerFrame(point=np.array(p, dtype=float)) for p in points]
    return f


def test_end_frame():
    f = feature(1, 3, [(0, 0, 1)] * 4)
    assert f.end_frame() == 6


def test_from_observation_splits_vector():
    frame = FeaturePerFrame.from_observation([1, 2, 3, 4, 5, 6, 7], 0.5)
    assert frame.point.tolist() == [1, 2, 3]
    assert frame.uv.tolist() == [4, 5]
    assert frame.velocity.tolist() == [6, 7]
    assert frame.cur_td == 0.5


def _add_frames(mgr, shift):
    for frame in range(2):
        image = {i: [(0, obs(0.01 * i + shift * frame, 0.02 * i))] for i in range(25)}
        assert mgr.add_feature_check_parallax(frame, image, 0.0) is True
    image = {i: [(0, obs(0.01 * i, 0.02 * i))] for i in range(25)}
    return mgr.add_feature_check_parallax(2, image, 0.0)


def test_parallax_low_is_not_keyframe():
    mgr = make_manager()
    assert _add_frames(mgr, 0.0) is False
    assert mgr.last_track_num == 25


def test_parallax_high_is_keyframe():
    mgr = make_manager()
    assert _add_frames(mgr, 0.2) is True


def test_few_tracked_features_make_keyframe():
    mgr = make_manager(min_parallax=100.0)
    for frame in range(3):
        image = {i: [(0, obs(0.0, 0.0))] for i in range(5)}
        result = mgr.add_feature_check_parallax(frame, image, 0.0)
    assert result is True
    assert mgr.last_track_num == 5


def test_feature_count_and_corresponding():
    mgr = make_manager()
    mgr.add_feature_check_parallax(0, {1: [(0, obs(0.1, 0.2))], 2: [(0, obs(0.3, 0.4))]}, 0.0)
    mgr.add_feature_check_parallax(1, {1: [(0, obs(0.5, 0.6))], 3: [(0, obs(0.7, 0.8))]}, 0.0)
    assert mgr.get_feature_count() == 1
    corres = mgr.get_corresponding(0, 1)
    assert len(corres) == 1
    a, b = corres[0]
    assert np.allclose(a, [0.1, 0.2, 1.0])
    assert np.allclose(b, [0.5, 0.6, 1.0])


def test_depth_vector_round_trip_and_failures():
    mgr = make_manager()
    mgr.feature = [feature(1, 0, [(0, 0, 1)] * 3), feature(2, 1, [(0, 0, 1)] * 2), feature(3, 0, [(0, 0, 1)])]
    mgr.set_depth([0.5, -0.25])
    assert mgr.feature[0].estimated_depth == pytest.approx(2.0)
    assert mgr.feature[0].solve_flag == 1
    assert mgr.feature[1].solve_flag == 2
    assert np.allclose(mgr.get_depth_vector(), [0.5, -0.25])
    mgr.remove_failures()
    assert [f.feature_id for f in mgr.feature] == [1, 3]


def test_clear_depth_keeps_flags():
    mgr = make_manager()
    mgr.feature = [feature(1, 0, [(0, 0, 1)] * 2)]
    mgr.clear_depth([-1.0])
    assert mgr.feature[0].estimated_depth == pytest.approx(-1.0)
    assert mgr.feature[0].solve_flag == 0


def test_triangulate_recovers_depth():
    mgr = make_manager()
    point = np.array([0.5, 0.2, 4.0])
    other = point - np.array([1.0, 0.0, 0.0])
    mgr.feature = [feature(1, 0, [point / point[2], other / other[2]])]
    ps = [np.zeros(3) for _ in range(11)]
    ps[1] = np.array([1.0, 0.0, 0.0])
    mgr.triangulate(ps, [np.zeros(3)], [np.eye(3)])
    assert mgr.feature[0].estimated_depth == pytest.approx(point[2])


def test_triangulate_behind_camera_uses_init_depth():
    mgr = make_manager()
    point = np.array([0.5, 0.2, -4.0])
    other = point - np.array([1.0, 0.0, 0.0])
    mgr.feature = [feature(1, 0, [point / point[2], other / other[2]])]
    ps = [np.zeros(3) for _ in range(11)]
    ps[1] = np.array([1.0, 0.0, 0.0])
    mgr.triangulate(ps, [np.zeros(3)], [np.eye(3)])
    assert mgr.feature[0].estimated_depth == INIT_DEPTH


def test_triangulate_skips_known_depth():
    mgr = make_manager()
    mgr.feature = [feature(1, 0, [(0, 0, 1), (0.1, 0, 1)])]
    mgr.feature[0].estimated_depth = 7.0
    mgr.triangulate([np.zeros(3)] * 11, [np.zeros(3)], [np.eye(3)])
    assert mgr.feature[0].estimated_depth == 7.0


def test_remove_back():
    mgr = make_manager()
    mgr.feature = [feature(1, 0, [(0, 0, 1)]), feature(2, 0, [(0, 0, 1), (1, 1, 1)]), feature(3, 2, [(0, 0, 1)])]
    mgr.remove_back()
    assert [f.feature_id for f in mgr.feature] == [2, 3]
    assert np.allclose(mgr.feature[0].feature_per_frame[0].point, [1, 1, 1])
    assert mgr.feature[1].start_frame == 1


def test_remove_back_shift_depth():
    mgr = make_manager()
    kept = feature(1, 0, [(0, 0, 1)] * 3)
    kept.estimated_depth = 5.0
    mgr.feature = [kept, feature(2, 0, [(0, 0, 1)] * 2), feature(3, 4, [(0, 0, 1)])]
    mgr.remove_back_shift_depth(np.eye(3), np.zeros(3), np.eye(3), np.array([0.0, 0.0, 1.0]))
    assert [f.feature_id for f in mgr.feature] == [1, 3]
    assert mgr.feature[0].estimated_depth == pytest.approx(4.0)
    assert len(mgr.feature[0].feature_per_frame) == 2
    assert mgr.feature[1].start_frame == 3


def test_remove_back_shift_depth_negative_uses_init_depth():
    mgr = make_manager()
    kept = feature(1, 0, [(0, 0, 1)] * 3)
    kept.estimated_depth = 5.0
    mgr.feature = [kept]
    mgr.remove_back_shift_depth(np.eye(3), np.zeros(3), np.eye(3), np.array([0.0, 0.0, 10.0]))
    assert mgr.feature[0].estimated_depth == INIT_DEPTH


def test_remove_front():
    mgr = make_manager(window_size=10)
    newest = feature(1, 10, [(0, 0, 1)])
    spanning = feature(2, 5, [(i, 0, 1) for i in range(6)])
    old = feature(3, 5, [(0, 0, 1)] * 4)
    only_second = feature(4, 9, [(0, 0, 1)])
    mgr.feature = [newest, spanning, old, only_second]
    mgr.remove_front(10)
    assert [f.feature_id for f in mgr.feature] == [1, 2, 3]
    assert newest.start_frame == 9
    assert [p.point[0] for p in spanning.feature_per_frame] == [0, 1, 2, 3, 5]
    assert len(old.feature_per_frame) == 4


def test_compensated_parallax2():
    mgr = make_manager()
    f = feature(1, 0, [(0.3, 0.4, 1.0), (0.0, 0.0, 1.0)])
    assert mgr.compensated_parallax2(f, 2) == pytest.approx(0.5)


def test_clear_state_and_set_ric():
    mgr = make_manager()
    mgr.feature = [feature(1, 0, [(0, 0, 1)])]
    mgr.clear_state()
    assert mgr.feature == []
    rotation = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    mgr.set_ric([rotation])
    assert np.array_equal(mgr.ric[0], rotation)