import pytest
import numpy as np
import sys
import os

# Add the src directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from precision_ekf.errors import ConfigurationError
from precision_ekf.fusion import CovarianceMatrix, FilterVariant, MeasurementChannel, PrecisionEKF


def make_filter(variant=FilterVariant.KINEMATIC, dt=0.1, **kwargs):
    """Filter with every channel its layout supports enabled"""
    ekf = PrecisionEKF(variant, dt, **kwargs)
    assert ekf.enable_odometry(0.01, 1e-4, 0.5)
    assert ekf.enable_absolute_position(0.05 ** 2, 0.05 ** 2)
    if variant is not FilterVariant.BASIC:
        assert ekf.enable_inertial(0.05 ** 2)
    return ekf


def assert_valid_covariance(P):
    """Symmetric and positive semi-definite up to rounding"""
    np.testing.assert_allclose(P, P.T, atol=1e-12)
    scale = max(1.0, np.max(np.abs(P)))
    assert np.min(np.linalg.eigvalsh(P)) >= -1e-9 * scale


class TestCovarianceMatrix:
    """Test covariance matrix handling and properties"""

    def test_default_prior(self):
        """Test default prior is diagonal with the documented variances"""
        cov = CovarianceMatrix(5)
        np.testing.assert_allclose(np.diag(cov.matrix), [10.0, 10.0, 1.0, 1.0, 1.0])
        assert np.count_nonzero(cov.matrix - np.diag(np.diag(cov.matrix))) == 0

    def test_matrix_is_a_copy(self):
        """Test external mutation does not reach internal state"""
        cov = CovarianceMatrix(3)
        exposed = cov.matrix
        exposed[0, 0] = -100.0
        assert cov.matrix[0, 0] == 10.0

    def test_rejects_invalid_priors(self):
        """Test shape, finiteness, symmetry and PSD checks on the prior"""
        with pytest.raises(ConfigurationError):
            CovarianceMatrix(3, np.eye(4))
        with pytest.raises(ConfigurationError):
            CovarianceMatrix(2, np.array([[1.0, np.nan], [np.nan, 1.0]]))
        with pytest.raises(ConfigurationError):
            CovarianceMatrix(2, np.array([[1.0, 0.5], [0.0, 1.0]]))
        with pytest.raises(ConfigurationError):
            CovarianceMatrix(2, np.diag([1.0, -1.0]))

    def test_zero_variances_are_preserved(self):
        """Test a perfectly known component is a legal prior"""
        cov = CovarianceMatrix(3, np.diag([0.0, 1.0, 1.0]))
        assert cov.matrix[0, 0] == 0.0

    def test_negative_eigenvalues_are_clamped(self):
        """Test PSD enforcement clamps eigenvalues to zero"""
        cov = CovarianceMatrix(2, np.eye(2))
        cov._matrix = np.array([[1.0, 2.0], [2.0, 1.0]])  # eigenvalues 3, -1

        assert cov.ensure_positive_semidefinite()
        eigenvalues = np.linalg.eigvalsh(cov.matrix)
        np.testing.assert_allclose(eigenvalues, [0.0, 3.0], atol=1e-12)

    def test_joseph_form_update(self):
        """Test Joseph form matches the textbook update for the optimal gain"""
        P = np.diag([4.0, 2.0])
        H = np.array([[1.0, 0.0]])
        R = np.array([[1.0]])
        K = P @ H.T @ np.linalg.inv(H @ P @ H.T + R)

        cov = CovarianceMatrix(2, P)
        cov.joseph_form_update(H, R, K)

        np.testing.assert_allclose(cov.matrix, (np.eye(2) - K @ H) @ P)


class TestFilterConstruction:
    """Test filter creation and channel enabling"""

    @pytest.mark.parametrize("variant,dimension", [
        (FilterVariant.BASIC, 3),
        (FilterVariant.KINEMATIC, 5),
        (FilterVariant.KINEMATIC_BIAS, 7),
    ])
    def test_dimensions(self, variant, dimension):
        """Test every layout starts at zero with its own dimension"""
        ekf = PrecisionEKF(variant, 0.1)
        assert ekf.state_dimension() == dimension
        assert ekf.mean().shape == (dimension,)
        assert ekf.covariance().shape == (dimension, dimension)
        np.testing.assert_array_equal(ekf.mean(), np.zeros(dimension))

    def test_variant_from_configuration_name(self):
        """Test string layout names are accepted"""
        assert PrecisionEKF("ekf_7state_verr", 0.1).variant is FilterVariant.KINEMATIC_BIAS

    def test_invalid_arguments(self):
        """Test construction fails fast on bad configuration"""
        with pytest.raises(ConfigurationError):
            PrecisionEKF("ekf_4state", 0.1)
        with pytest.raises(ConfigurationError):
            PrecisionEKF(FilterVariant.BASIC, 0.0)
        with pytest.raises(ConfigurationError):
            PrecisionEKF(FilterVariant.BASIC, 0.1, initial_state=[0.0, 0.0])
        with pytest.raises(ConfigurationError):
            PrecisionEKF(FilterVariant.BASIC, 0.1, process_noise=[0.1, 0.1])
        with pytest.raises(ConfigurationError):
            PrecisionEKF(FilterVariant.BASIC, 0.1, process_noise={'x': 0.1, 'y': 0.1, 'tilt': 0.1})

    def test_process_noise_sequence(self):
        """Test ordered process variances are accepted for the layout's states"""
        ekf = PrecisionEKF(FilterVariant.BASIC, 1.0, process_noise=[0.1, 0.2, 0.3])
        ekf.predict()
        np.testing.assert_allclose(np.diag(ekf.covariance()), [10.1, 10.2, 1.3])

    def test_inertial_rejected_by_basic_layout(self):
        """Test the basic layout has no angular rate to observe"""
        ekf = PrecisionEKF(FilterVariant.BASIC, 0.1)
        assert not ekf.enable_inertial(0.01)
        assert not ekf.is_enabled(MeasurementChannel.INERTIAL)

    def test_enable_rejects_negative_noise(self):
        """Test invalid channel parameters leave the channel disabled"""
        ekf = PrecisionEKF(FilterVariant.KINEMATIC, 0.1)
        assert not ekf.enable_absolute_position(-1.0, 0.1)
        assert not ekf.enable_odometry(0.01, 1e-4, track_width=0.0)
        assert not ekf.is_enabled(MeasurementChannel.ABSOLUTE_POSITION)
        assert not ekf.is_enabled(MeasurementChannel.ODOMETRY)

    def test_correction_on_disabled_channel_is_noop(self):
        """Test corrections on channels that were never enabled"""
        ekf = PrecisionEKF(FilterVariant.KINEMATIC, 0.1)
        before = ekf.mean()
        assert not ekf.correct_absolute_position(1.0, 1.0)
        np.testing.assert_array_equal(ekf.mean(), before)


class TestPrediction:
    """Test the prediction step"""

    def test_basic_odometry_integration(self):
        """Test ten steps of unit wheel speed move the robot one metre"""
        ekf = make_filter(FilterVariant.BASIC, dt=0.1)

        for _ in range(10):
            assert ekf.correct_odometry(1.0, 1.0)
            ekf.predict()

        np.testing.assert_allclose(ekf.mean(), [1.0, 0.0, 0.0], atol=1e-12)

    def test_basic_without_input_stays_put(self):
        """Test the basic layout holds its pose until odometry arrives"""
        ekf = make_filter(FilterVariant.BASIC, dt=0.1)
        ekf.predict()
        np.testing.assert_array_equal(ekf.mean(), np.zeros(3))

    def test_basic_input_noise_grows_covariance(self):
        """Test odometry input noise enters the prediction"""
        quiet = make_filter(FilterVariant.BASIC, dt=0.1)
        driven = make_filter(FilterVariant.BASIC, dt=0.1)
        driven.correct_odometry(1.0, 1.0)

        quiet.predict()
        driven.predict()

        assert np.trace(driven.covariance()) > np.trace(quiet.covariance())

    def test_kinematic_straight_motion(self):
        """Test constant velocity along the heading"""
        ekf = make_filter(FilterVariant.KINEMATIC, dt=0.5,
                          initial_state=[0.0, 0.0, np.pi / 2, 2.0, 0.0])
        ekf.predict()
        np.testing.assert_allclose(ekf.pose(), [0.0, 1.0, np.pi / 2], atol=1e-12)

    def test_kinematic_arc_motion(self):
        """Test a quarter circle of radius one"""
        omega = np.pi / 2
        ekf = make_filter(FilterVariant.KINEMATIC, dt=1.0,
                          initial_state=[0.0, 0.0, 0.0, omega, omega])
        ekf.predict()
        np.testing.assert_allclose(ekf.pose(), [1.0, 1.0, np.pi / 2], atol=1e-12)

    def test_heading_wraps(self):
        """Test heading stays in (-π, π] after crossing π"""
        ekf = make_filter(FilterVariant.KINEMATIC, dt=0.1,
                          initial_state=[0.0, 0.0, 3.1, 0.0, 1.0])
        ekf.predict()
        heading = ekf.pose()[2]
        assert -np.pi < heading <= np.pi
        assert heading == pytest.approx(3.2 - 2 * np.pi)

    @pytest.mark.parametrize("variant,initial_state", [
        (FilterVariant.BASIC, None),
        (FilterVariant.KINEMATIC, None),
        (FilterVariant.KINEMATIC, [0.0, 0.0, 0.0, 1.0, 0.0]),
        (FilterVariant.KINEMATIC_BIAS, [0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0]),
    ])
    def test_prediction_never_shrinks_trace(self, variant, initial_state):
        """Test uncertainty only grows without corrections"""
        ekf = PrecisionEKF(variant, 0.1, initial_state=initial_state)
        trace = np.trace(ekf.covariance())

        for _ in range(20):
            ekf.predict()
            new_trace = np.trace(ekf.covariance())
            assert new_trace >= trace
            trace = new_trace

    def test_set_timestep_validation(self):
        """Test invalid timesteps are rejected and counted"""
        ekf = make_filter(dt=0.1)
        assert ekf.set_timestep(0.25)
        assert ekf.timestep == 0.25

        assert not ekf.set_timestep(0.0)
        assert not ekf.set_timestep(-1.0)
        assert not ekf.set_timestep(float('nan'))
        assert ekf.timestep == 0.25
        assert ekf.get_diagnostics().rejected_inputs == 3


class TestCorrection:
    """Test the generic correction step"""

    def test_position_correction_matches_closed_form(self):
        """Test mean and covariance against a hand-computed update"""
        ekf = make_filter(FilterVariant.KINEMATIC)
        P = ekf.covariance()
        H = np.zeros((2, 5))
        H[0, 0] = H[1, 1] = 1.0
        R = np.diag([0.05 ** 2, 0.05 ** 2])
        z = np.array([1.0, 2.0])

        K = P @ H.T @ np.linalg.inv(H @ P @ H.T + R)
        expected_mean = K @ z
        expected_cov = (np.eye(5) - K @ H) @ P

        assert ekf.correct_absolute_position(*z)
        np.testing.assert_allclose(ekf.mean(), expected_mean, atol=1e-12)
        np.testing.assert_allclose(ekf.covariance(), expected_cov, atol=1e-12)
        np.testing.assert_allclose(ekf.get_diagnostics().last_innovation['gps'], z)

    def test_dead_reckoning_then_position_fix(self):
        """Test a precise fix after five seconds of dead reckoning pulls the mean toward it"""
        ekf = PrecisionEKF(FilterVariant.KINEMATIC, 0.1,
                           initial_state=[0.0, 0.0, np.pi / 4, 1.0, 0.0])
        assert ekf.enable_absolute_position(0.01, 0.01)
        for _ in range(50):
            ekf.predict()

        # five metres along the diagonal
        drifted = ekf.mean()
        np.testing.assert_allclose(drifted[:2], [5.0 / np.sqrt(2)] * 2, atol=1e-9)

        assert ekf.correct_absolute_position(5.0, 5.0)
        x, y, _ = ekf.pose()
        assert 4.9 < x < 5.0
        assert 4.9 < y < 5.0
        assert np.hypot(x - 5.0, y - 5.0) < np.hypot(drifted[0] - 5.0, drifted[1] - 5.0)

        exact = PrecisionEKF(FilterVariant.KINEMATIC, 0.1)
        assert exact.enable_absolute_position(1e-9, 1e-9)
        exact.correct_absolute_position(5.0, 5.0)
        assert exact.pose()[:2] == pytest.approx((5.0, 5.0), abs=1e-6)

    def test_zero_innovation_keeps_mean(self):
        """Test an observation equal to the prediction leaves the mean unchanged"""
        ekf = make_filter(FilterVariant.KINEMATIC,
                          initial_state=[1.0, -2.0, 0.3, 0.5, 0.1])
        ekf.predict()
        before = ekf.mean()
        trace_before = np.trace(ekf.covariance())

        assert ekf.correct_absolute_position(before[0], before[1])
        np.testing.assert_allclose(ekf.mean(), before, atol=1e-12)
        assert np.trace(ekf.covariance()) < trace_before

    def test_singular_innovation_is_skipped(self):
        """Test a zero innovation covariance skips the correction"""
        ekf = PrecisionEKF(FilterVariant.KINEMATIC, 0.1, initial_covariance=np.zeros((5, 5)))
        assert ekf.enable_absolute_position(0.0, 0.0)

        assert not ekf.correct_absolute_position(1.0, 1.0)
        np.testing.assert_array_equal(ekf.mean(), np.zeros(5))
        np.testing.assert_array_equal(ekf.covariance(), np.zeros((5, 5)))
        assert ekf.get_diagnostics().skipped_corrections == 1

    def test_non_finite_measurement_rejected(self):
        """Test NaN measurements leave the filter untouched"""
        ekf = make_filter()
        before = ekf.mean(), ekf.covariance()

        assert not ekf.correct_absolute_position(np.nan, 0.0)
        assert not ekf.correct_inertial(np.inf)
        assert not ekf.correct_odometry(None, 1.0)

        np.testing.assert_array_equal(ekf.mean(), before[0])
        np.testing.assert_array_equal(ekf.covariance(), before[1])
        assert ekf.get_diagnostics().rejected_inputs == 3

    def test_inertial_observes_angular_rate(self):
        """Test a gyro reading pulls the angular rate toward it"""
        ekf = make_filter(FilterVariant.KINEMATIC)
        assert ekf.correct_inertial(0.4)
        omega = ekf.mean()[4]
        assert 0.0 < omega <= 0.4
        assert omega == pytest.approx(0.4, rel=0.01)

    def test_odometry_corrects_velocity(self):
        """Test equal wheel speeds observe forward velocity"""
        ekf = make_filter(FilterVariant.KINEMATIC)
        assert ekf.correct_odometry(1.0, 1.0)
        v, omega = ekf.mean()[3:5]
        assert v == pytest.approx(1.0, rel=0.01)
        assert omega == pytest.approx(0.0, abs=1e-9)

    def test_wheel_bias_is_observable(self):
        """Test bias states absorb a persistent left/right disagreement"""
        ekf = make_filter(FilterVariant.KINEMATIC_BIAS)
        for _ in range(50):
            ekf.predict()
            ekf.correct_inertial(0.0)
            ekf.correct_odometry(1.1, 0.9)

        bias_left, bias_right = ekf.mean()[5:7]
        assert bias_left > 0.0
        assert bias_right < 0.0

    def test_correction_keeps_heading_wrapped(self):
        """Test the heading stays in range after a correction"""
        ekf = make_filter(FilterVariant.KINEMATIC,
                          initial_state=[0.0, 0.0, np.pi, 1.0, 0.0])
        ekf.predict()
        ekf.correct_absolute_position(-0.1, -0.05)
        heading = ekf.pose()[2]
        assert -np.pi < heading <= np.pi


class TestCovarianceInvariants:
    """Test symmetry and PSD under arbitrary call sequences"""

    @pytest.mark.parametrize("variant", list(FilterVariant))
    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_random_sequences(self, variant, seed):
        """Test every operation preserves a valid covariance"""
        rng = np.random.default_rng(seed)
        ekf = make_filter(variant)

        for _ in range(200):
            action = rng.integers(5)
            if action == 0:
                ekf.set_timestep(rng.uniform(0.01, 0.5))
                ekf.predict()
            elif action == 1:
                ekf.correct_odometry(*rng.normal(1.0, 0.5, 2))
            elif action == 2:
                ekf.correct_inertial(rng.normal(0.0, 0.3))
            elif action == 3:
                ekf.correct_absolute_position(*rng.normal(0.0, 5.0, 2))
            else:
                ekf.predict()

            assert_valid_covariance(ekf.covariance())
            heading = ekf.pose()[2]
            assert -np.pi < heading <= np.pi


class TestAccessors:
    """Test read-only views and diagnostics"""

    def test_mean_is_a_copy(self):
        """Test mutating the returned mean does not change the filter"""
        ekf = make_filter()
        mean = ekf.mean()
        mean[0] = 42.0
        assert ekf.mean()[0] == 0.0

    def test_three_sigma(self):
        """Test 3-sigma bounds from the covariance diagonal"""
        ekf = PrecisionEKF(FilterVariant.KINEMATIC, 0.1,
                           initial_covariance=np.diag([1.0, 4.0, 0.25, 1.0, 1.0]))
        np.testing.assert_allclose(ekf.three_sigma(), [3.0, 6.0, 1.5, 3.0, 3.0])

    def test_debug_snapshot_names(self):
        """Test snapshots carry every active state by name"""
        snapshot = make_filter(FilterVariant.KINEMATIC_BIAS).debug_snapshot()
        assert list(snapshot['state']) == ["x", "y", "heading", "velocity", "angular_rate",
                                           "left_wheel_bias", "right_wheel_bias"]
        assert set(snapshot['three_sigma']) == set(snapshot['state'])

    def test_pose_covariance_block(self):
        """Test the pose block is the leading 3x3 of the covariance"""
        ekf = make_filter(FilterVariant.KINEMATIC_BIAS)
        ekf.predict()
        np.testing.assert_array_equal(ekf.pose_covariance(), ekf.covariance()[:3, :3])

    def test_diagnostics_counters(self):
        """Test prediction and correction counts"""
        ekf = make_filter()
        ekf.predict()
        ekf.correct_absolute_position(0.0, 0.0)
        ekf.correct_inertial(0.0)

        diagnostics = ekf.get_diagnostics()
        assert diagnostics.prediction_count == 1
        assert diagnostics.correction_count == 2
        assert diagnostics.covariance_trace == pytest.approx(np.trace(ekf.covariance()))

    def test_reset(self):
        """Test reset restores priors and keeps channels"""
        ekf = make_filter()
        ekf.predict()
        ekf.correct_absolute_position(3.0, 4.0)

        ekf.reset(initial_state=[1.0, 1.0, 0.0, 0.0, 0.0])

        np.testing.assert_array_equal(ekf.mean(), [1.0, 1.0, 0.0, 0.0, 0.0])
        assert ekf.get_diagnostics().prediction_count == 0
        assert ekf.is_enabled(MeasurementChannel.ABSOLUTE_POSITION)
