import pytest

from cone_steering.config import DropoutMode, SteeringConfig
from cone_steering.steering import MarkerCase, SteeringState, estimate_steering

WIDTH = 640


def test_no_markers_keeps_angle_and_state():
    state = SteeringState(clockwise=True, dropout_count=4, angle=-0.07)
    res = estimate_steering(None, None, WIDTH, state)
    assert res.case is MarkerCase.NEITHER
    assert res.held
    assert res.angle == -0.07
    assert res.state == state


@pytest.mark.parametrize(
    "a_x, b_x, expected",
    [
        (500, 100, 0.12 * 40 / 320),   # dA=220 > dB=180
        (600, 200, -0.12 * 160 / 320),  # dA=120 < dB=280
    ],
)
def test_counter_clockwise_formula(a_x, b_x, expected):
    state = SteeringState(clockwise=True, dropout_count=12, angle=0.3)
    res = estimate_steering(a_x, b_x, WIDTH, state)
    assert res.case is MarkerCase.BOTH
    assert res.angle == pytest.approx(expected)
    assert res.state == SteeringState(clockwise=False, dropout_count=0, angle=res.angle)


@pytest.mark.parametrize(
    "a_x, b_x, expected",
    [
        (100, 500, -0.12 * 40 / 320),  # dA=220 > dB=180
        (200, 600, 0.12 * 160 / 320),  # dA=120 < dB=280
    ],
)
def test_clockwise_formula(a_x, b_x, expected):
    res = estimate_steering(a_x, b_x, WIDTH, SteeringState())
    assert res.angle == pytest.approx(expected)
    assert res.state.clockwise
    assert res.state.dropout_count == 0


def test_balanced_cones_give_zero_angle():
    res = estimate_steering(500, 140, WIDTH, SteeringState(angle=0.05))
    assert res.angle == 0.0
    assert not res.state.clockwise


@pytest.mark.parametrize("a_x, b_x", [(400, 500), (100, 200), (320, 100), (500, 320)])
def test_both_on_same_side_holds_previous_angle(a_x, b_x):
    state = SteeringState(clockwise=True, dropout_count=9, angle=-0.042)
    res = estimate_steering(a_x, b_x, WIDTH, state)
    assert res.case is MarkerCase.BOTH
    assert res.held
    assert res.angle == -0.042
    assert res.state.clockwise
    assert res.state.dropout_count == 0


def test_only_blue_clockwise_escalates_after_threshold():
    state = SteeringState(clockwise=True)
    for _ in range(30):
        res = estimate_steering(200, None, WIDTH, state)
        state = res.state
        assert res.angle == pytest.approx(-0.1)
    assert state.dropout_count == 30

    res = estimate_steering(200, None, WIDTH, state)
    assert res.state.dropout_count == 31
    assert res.angle == pytest.approx(-0.15)


def test_only_blue_counter_clockwise_counts_but_does_not_escalate():
    state = SteeringState(clockwise=False, dropout_count=50)
    res = estimate_steering(200, None, WIDTH, state)
    assert res.case is MarkerCase.ONLY_A
    assert res.angle == pytest.approx(0.1)
    assert res.state.dropout_count == 51


def test_both_present_resets_dropout():
    state = SteeringState(clockwise=True, dropout_count=40, angle=-0.15)
    res = estimate_steering(100, 500, WIDTH, state)
    assert res.state.dropout_count == 0


@pytest.mark.parametrize("clockwise, expected", [(False, 0.1), (True, -0.1)])
def test_only_yellow_never_touches_dropout(clockwise, expected):
    state = SteeringState(clockwise=clockwise, dropout_count=7)
    for _ in range(100):
        res = estimate_steering(None, 150, WIDTH, state)
        state = res.state
        assert res.case is MarkerCase.ONLY_B
        assert res.angle == pytest.approx(expected)
    assert state.dropout_count == 7


def test_symmetric_mode_counts_yellow_dropout():
    cfg = SteeringConfig(dropout_mode=DropoutMode.SYMMETRIC)
    state = SteeringState(clockwise=False, dropout_count=30)
    res = estimate_steering(None, 150, WIDTH, state, cfg)
    assert res.state.dropout_count == 31
    assert res.angle == pytest.approx(0.15)

    res = estimate_steering(None, 150, WIDTH, SteeringState(clockwise=True, dropout_count=30), cfg)
    assert res.angle == pytest.approx(-0.1)


def test_tuned_constants_are_used():
    cfg = SteeringConfig(gain=0.5, dropout_threshold=2, fallback_angle=0.2, dropout_angle=0.3)
    res = estimate_steering(500, 100, WIDTH, SteeringState(), cfg)
    assert res.angle == pytest.approx(0.5 * 40 / 320)

    state = SteeringState(clockwise=True, dropout_count=2)
    assert estimate_steering(100, None, WIDTH, state, cfg).angle == pytest.approx(-0.3)
    assert estimate_steering(None, 100, WIDTH, state, cfg).angle == pytest.approx(-0.2)


def test_estimation_is_deterministic():
    state = SteeringState(clockwise=True, dropout_count=3, angle=0.01)
    first = estimate_steering(450, 90, WIDTH, state)
    second = estimate_steering(450, 90, WIDTH, state)
    assert first == second


@pytest.mark.parametrize("width", [0, 1])
def test_degenerate_width_holds_instead_of_failing(width):
    state = SteeringState(clockwise=True, dropout_count=6, angle=0.04)
    res = estimate_steering(1, 0, width, state)
    assert res.case is MarkerCase.BOTH
    assert res.held
    assert res.angle == 0.04
    assert res.state == SteeringState(clockwise=True, dropout_count=0, angle=0.04)
