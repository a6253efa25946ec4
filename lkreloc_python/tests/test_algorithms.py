"""Tests for algorithm modules."""

import numpy as np
import pytest

from lkreloc.algorithms.gradients import GradientComputer, compute_gradients
from lkreloc.algorithms.warp import WarpModel, apply_warp, warp_points
from lkreloc.algorithms.alignment import (
    AlignmentSolver,
    AlignmentResult,
    IterationRecord,
    pseudo_inverse,
    run_alignment,
    _accumulate_normal_equations,
)

from lkreloc.core.alignment_parameters import AlignmentParameters
from lkreloc.core.mask import PixelMask
from lkreloc.core.status import AlignmentStatus, ConfigurationError
from lkreloc.core.warp_parameters import WarpParameters


class TestGradientComputer:
    """Tests for image gradients."""

    def test_unit_ramp_x(self):
        """A unit ramp along x has gradient 1 inside, 0.5 at the borders."""
        ramp = np.tile(np.arange(10, dtype=np.float64), (6, 1))

        gx, gy = GradientComputer.compute(ramp)

        np.testing.assert_allclose(gx[:, 1:-1], 1.0)
        np.testing.assert_allclose(gx[:, 0], 0.5)
        np.testing.assert_allclose(gx[:, -1], 0.5)
        np.testing.assert_allclose(gy, 0.0)

    def test_unit_ramp_y(self):
        """A ramp along rows only shows up in grad_y."""
        ramp = np.tile(np.arange(8, dtype=np.float64)[:, None] * 2.0, (1, 5))

        gx, gy = compute_gradients(ramp)

        np.testing.assert_allclose(gx, 0.0)
        np.testing.assert_allclose(gy[1:-1], 2.0)

    def test_shape_preserved(self, sample_grayscale_image):
        """Gradients have the image size."""
        gx, gy = compute_gradients(sample_grayscale_image)

        assert gx.shape == sample_grayscale_image.shape
        assert gy.shape == sample_grayscale_image.shape
        assert gx.dtype == np.float64

    def test_uniform_image(self, uniform_image):
        """Constant images have zero gradient."""
        gx, gy = compute_gradients(uniform_image)

        assert np.all(gx == 0.0)
        assert np.all(gy == 0.0)

    def test_non_finite_rejected(self):
        """Non-finite images are rejected."""
        data = np.ones((5, 5))
        data[0, 0] = np.inf

        with pytest.raises(ConfigurationError):
            compute_gradients(data)


class TestWarpModel:
    """Tests for the SE(2) warp."""

    def test_identity_warp(self, smooth_texture):
        """Identity warp reproduces the image exactly."""
        warped, valid = apply_warp(smooth_texture, WarpParameters.identity(), return_valid=True)

        np.testing.assert_array_equal(warped, smooth_texture)
        assert valid.all()

    def test_integer_translation(self, smooth_texture):
        """Integer translation shifts the image and zero-fills the border."""
        warped, valid = apply_warp(smooth_texture, WarpParameters(0.0, 2.0, 1.0), return_valid=True)

        np.testing.assert_array_equal(warped[1:, 2:], smooth_texture[:-1, :-2])
        assert np.all(warped[:, :2] == 0.0)
        assert np.all(warped[0, :] == 0.0)
        assert not valid[:, :2].any()
        assert valid[1:, 2:].all()

    def test_source_coordinates(self):
        """Sampling coordinate is R^T (x - t)."""
        p = WarpParameters(theta=np.pi / 2, tx=1.0, ty=2.0)

        sx, sy = WarpModel.source_coordinates(p, np.array([3.0]), np.array([5.0]))

        # x - t = (2, 3); R^T rotates by -90 degrees
        np.testing.assert_allclose([sx[0], sy[0]], [3.0, -2.0], atol=1e-12)

    def test_matrix_maps_source_to_destination(self):
        """The warp matrix maps sampling coordinates back onto the destination."""
        p = WarpParameters(theta=0.3, tx=-4.0, ty=2.5)
        xs = np.array([0.0, 10.0, 33.0])
        ys = np.array([5.0, 0.0, 17.0])

        sx, sy = WarpModel.source_coordinates(p, xs, ys)
        dest = WarpModel.matrix(p) @ np.vstack([sx, sy, np.ones(3)])

        np.testing.assert_allclose(dest[0], xs, atol=1e-12)
        np.testing.assert_allclose(dest[1], ys, atol=1e-12)

    def test_jacobian_matches_finite_differences(self):
        """Analytic Jacobian agrees with central differences."""
        p = np.array([0.2, 3.0, -1.5])
        xs = np.array([0.0, 17.0, 40.0, 63.0])
        ys = np.array([9.0, 0.0, 25.0, 63.0])
        eps = 1e-6

        jac = WarpModel.jacobian(p, xs, ys)

        assert jac.shape == (4, 2, 3)
        for k in range(3):
            step = np.zeros(3)
            step[k] = eps
            sx_hi, sy_hi = WarpModel.source_coordinates(p + step, xs, ys)
            sx_lo, sy_lo = WarpModel.source_coordinates(p - step, xs, ys)
            np.testing.assert_allclose(jac[:, 0, k], (sx_hi - sx_lo) / (2 * eps), atol=1e-6)
            np.testing.assert_allclose(jac[:, 1, k], (sy_hi - sy_lo) / (2 * eps), atol=1e-6)

    def test_invalid_gradients_are_zero(self, smooth_texture):
        """Pixels invalid in the warped image are zero in the warped gradients."""
        p = WarpParameters(theta=0.1, tx=5.0, ty=-3.0)
        gx, gy = compute_gradients(smooth_texture)

        _, valid_img = apply_warp(smooth_texture, p, return_valid=True)
        warped_gx, valid_gx = apply_warp(gx, p, return_valid=True)
        warped_gy, valid_gy = apply_warp(gy, p, return_valid=True)

        assert (~valid_img).any()
        np.testing.assert_array_equal(valid_img, valid_gx)
        np.testing.assert_array_equal(valid_img, valid_gy)
        assert np.all(warped_gx[~valid_img] == 0.0)
        assert np.all(warped_gy[~valid_img] == 0.0)

    def test_warp_points_shared_validity(self, smooth_texture):
        """All channels of a stack are sampled at the same coordinates."""
        gx, gy = compute_gradients(smooth_texture)
        p = WarpParameters(theta=-0.05, tx=-3.0, ty=2.0)
        xs = np.array([0.0, 50.0, 127.0])
        ys = np.array([0.0, 60.0, 127.0])

        samples, valid = warp_points(np.stack([smooth_texture, gx, gy]), p, xs, ys)
        single, single_valid = warp_points(gx, p, xs, ys)

        assert samples.shape == (3, 3)
        np.testing.assert_array_equal(valid, single_valid)
        np.testing.assert_array_equal(samples[1], single[0])

    def test_output_size(self, sample_grayscale_image):
        """Warped image has the input size."""
        warped = WarpModel.apply(sample_grayscale_image.astype(np.float64), [0.2, 1.0, 1.0])

        assert warped.shape == sample_grayscale_image.shape

    def test_non_finite_parameters(self, smooth_texture):
        """Non-finite parameters are rejected."""
        with pytest.raises(ConfigurationError):
            apply_warp(smooth_texture, WarpParameters(np.nan, 0.0, 0.0))

    def test_zero_area(self):
        """Zero-area images are rejected."""
        with pytest.raises(ConfigurationError):
            apply_warp(np.zeros((0, 4)), WarpParameters.identity())

    def test_color_image_rejected(self, sample_rgb_image):
        """Only 2D images can be warped whole."""
        with pytest.raises(ConfigurationError, match="2D"):
            apply_warp(sample_rgb_image, WarpParameters.identity())

    def test_color_channels_via_warp_points(self, sample_rgb_image):
        """Channel stacks go through warp_points instead."""
        stack = np.ascontiguousarray(np.moveaxis(sample_rgb_image, -1, 0).astype(np.float64))
        xs = np.array([10.0, 20.0])
        ys = np.array([30.0, 40.0])

        samples, valid = warp_points(stack, WarpParameters.identity(), xs, ys)

        assert samples.shape == (3, 2)
        assert valid.all()
        np.testing.assert_allclose(samples[:, 0], sample_rgb_image[30, 10])


class TestNumericalHelpers:
    """Tests for pseudo-inverse and normal equations."""

    def test_pseudo_inverse_invertible(self):
        """Well-conditioned matrices give the ordinary inverse."""
        m = np.array([[4.0, 1.0, 0.0], [1.0, 3.0, 0.5], [0.0, 0.5, 2.0]])

        np.testing.assert_allclose(pseudo_inverse(m) @ m, np.eye(3), atol=1e-12)

    def test_pseudo_inverse_zero(self):
        """The zero matrix inverts to zero without raising."""
        np.testing.assert_array_equal(pseudo_inverse(np.zeros((3, 3))), np.zeros((3, 3)))

    def test_pseudo_inverse_rank_deficient(self):
        """Null directions are dropped."""
        m = np.diag([2.0, 0.0, 4.0])

        np.testing.assert_allclose(pseudo_inverse(m), np.diag([0.5, 0.0, 0.25]), atol=1e-15)

    def test_normal_equations(self):
        """Accumulated Hessian and rhs match a dense computation."""
        rng = np.random.default_rng(3)
        n = 50
        gx = rng.normal(size=n)
        gy = rng.normal(size=n)
        jac = rng.normal(size=(n, 2, 3))
        residual = rng.normal(size=n)
        valid = rng.random(n) > 0.2

        hessian, rhs = _accumulate_normal_equations(gx, gy, jac, residual, valid)

        sd = gx[:, None] * jac[:, 0, :] + gy[:, None] * jac[:, 1, :]
        sd = sd[valid]
        np.testing.assert_allclose(hessian, sd.T @ sd, rtol=1e-12)
        np.testing.assert_allclose(rhs, sd.T @ residual[valid], rtol=1e-12)


class TestAlignmentSolver:
    """Tests for the Gauss-Newton alignment."""

    def test_identity_recovery(self, smooth_texture, interior_mask):
        """Aligning an image with itself converges at once to zero motion."""
        result = run_alignment(smooth_texture, smooth_texture, interior_mask)

        assert result.status == AlignmentStatus.CONVERGED
        assert result.ok
        assert result.iterations == 1
        assert result.params.theta == 0.0
        assert result.params.tx == 0.0
        assert result.params.ty == 0.0
        assert result.cost == 0.0

    def test_known_warp_recovery(self, smooth_texture, warped_candidate, interior_mask, known_warp):
        """A synthetic rigid motion is recovered."""
        result = run_alignment(smooth_texture, warped_candidate, interior_mask)

        assert result.ok
        assert abs(result.params.theta - known_warp.theta) < 1e-2
        assert abs(result.params.tx - known_warp.tx) < 0.5
        assert abs(result.params.ty - known_warp.ty) < 0.5
        assert result.valid_pixels == result.mask_pixels

    @pytest.mark.parametrize(
        "theta, tx, ty",
        [
            (0.1, 0.0, 0.0),
            (0.2, 0.0, 0.0),
            (-0.25, 0.0, 0.0),
            (0.0, 8.0, -8.0),
            (0.0, 9.5, 0.0),
            (0.2, 8.0, 6.0),
        ],
    )
    def test_known_warp_recovery_range(self, smooth_texture, interior_mask, theta, tx, ty):
        """
        Motions up to |theta| = 0.25 rad and 9.5 px are recovered from identity.

        Rotation is about the image origin, so the far mask corner moves by
        about |theta| * 147 px; the basin is bounded by the 31-53 px
        wavelengths of the texture.
        """
        warp = WarpParameters(theta=theta, tx=tx, ty=ty)
        candidate = apply_warp(smooth_texture, warp.inverse())

        result = run_alignment(smooth_texture, candidate, interior_mask)

        assert result.ok
        assert abs(result.params.theta - theta) < 1e-2
        assert abs(result.params.tx - tx) < 0.5
        assert abs(result.params.ty - ty) < 0.5
        assert result.rms_residual < 0.02

    def test_wrong_local_minimum(self, smooth_texture, interior_mask):
        """Outside the basin the solver settles on a wrong warp with a high residual."""
        warp = WarpParameters(theta=0.25, tx=0.0, ty=0.0)
        candidate = apply_warp(smooth_texture, warp.inverse())

        result = run_alignment(smooth_texture, candidate, interior_mask)

        assert result.status == AlignmentStatus.CONVERGED
        assert abs(result.params.theta - warp.theta) > 0.1
        assert result.rms_residual > 0.1

    def test_known_warp_from_initial_guess(self, smooth_texture, warped_candidate, interior_mask, known_warp):
        """Starting at the answer converges immediately."""
        result = run_alignment(
            smooth_texture, warped_candidate, interior_mask, initial=known_warp,
        )

        assert result.ok
        assert result.iterations == 1

    def test_cost_non_increasing(self, smooth_texture, warped_candidate, interior_mask):
        """Residual cost does not grow over the iterations."""
        result = run_alignment(smooth_texture, warped_candidate, interior_mask)

        costs = [record.cost for record in result.history]
        assert len(costs) >= 2
        for before, after in zip(costs, costs[1:]):
            assert after <= before * (1 + 1e-9)
        assert result.cost < costs[0]

    def test_uniform_image_fails(self, uniform_image):
        """Textureless input is reported as a numerical failure."""
        mask = np.ones(uniform_image.shape, dtype=np.bool_)

        result = run_alignment(uniform_image, uniform_image, mask)

        assert result.status == AlignmentStatus.NUMERICAL_FAILURE
        assert not result.ok
        assert result.iterations == 0
        assert result.params == WarpParameters.identity()

    def test_too_few_pixels_fails(self, smooth_texture):
        """Fewer valid pixels than parameters is a numerical failure."""
        result = run_alignment(smooth_texture, smooth_texture, [(60, 60), (61, 62)])

        assert result.status == AlignmentStatus.NUMERICAL_FAILURE

    def test_all_pixels_out_of_bounds(self, smooth_texture, interior_mask):
        """A start far outside the image is a numerical failure."""
        result = run_alignment(
            smooth_texture, smooth_texture, interior_mask,
            initial=WarpParameters(0.0, 1000.0, 0.0),
        )

        assert result.status == AlignmentStatus.NUMERICAL_FAILURE
        assert result.valid_pixels == 0
        assert np.isnan(result.rms_residual)

    def test_max_iterations(self, smooth_texture, warped_candidate, interior_mask):
        """The iteration cap is reported, not converged."""
        params = AlignmentParameters(cutoff_diffnorm=1e-9, cutoff_iteration=1)

        result = run_alignment(smooth_texture, warped_candidate, interior_mask, parameters=params)

        assert result.status == AlignmentStatus.MAX_ITERATIONS
        assert result.iterations == 1
        assert not result.ok

    def test_deterministic(self, smooth_texture, warped_candidate, interior_mask):
        """Identical inputs give bit-identical results."""
        first = run_alignment(smooth_texture, warped_candidate, interior_mask)
        second = run_alignment(smooth_texture, warped_candidate, interior_mask)

        assert first.params == second.params
        assert first.cost == second.cost
        assert [r.cost for r in first.history] == [r.cost for r in second.history]

    def test_iteration_callback(self, smooth_texture, warped_candidate, interior_mask):
        """The callback sees every iteration in order."""
        records = []
        solver = AlignmentSolver()
        solver.set_iteration_callback(records.append)

        result = solver.align(smooth_texture, warped_candidate, interior_mask)

        assert len(records) == result.iterations
        assert [r.iteration for r in records] == list(range(1, result.iterations + 1))
        assert all(isinstance(r, IterationRecord) for r in records)
        assert records[-1].params == result.params

    def test_mask_forms_equivalent(self, smooth_texture, warped_candidate, interior_mask):
        """Grid, PixelMask and coordinate masks give the same result."""
        rows, cols = np.nonzero(interior_mask)
        coords = list(zip(rows.tolist(), cols.tolist()))

        from_grid = run_alignment(smooth_texture, warped_candidate, interior_mask)
        from_mask = run_alignment(smooth_texture, warped_candidate, PixelMask.from_grid(interior_mask))
        from_coords = run_alignment(smooth_texture, warped_candidate, coords)

        assert from_grid.params == from_mask.params == from_coords.params

    def test_shape_mismatch(self, smooth_texture, interior_mask):
        """Reference and candidate must have the same size."""
        with pytest.raises(ConfigurationError, match="shape"):
            run_alignment(smooth_texture, smooth_texture[:100], interior_mask)

    def test_mask_shape_mismatch(self, smooth_texture):
        """Mask must have the image size."""
        with pytest.raises(ConfigurationError, match="Mask shape"):
            run_alignment(smooth_texture, smooth_texture, np.ones((64, 64), dtype=np.bool_))

    def test_wrong_size_integer_grid(self, smooth_texture):
        """Integer grids of another size are rejected, not read as coordinates."""
        for dtype in (np.uint8, np.int64, np.float64):
            grid = np.zeros((64, 64), dtype=dtype)
            grid[10:50, 10:50] = 1

            with pytest.raises(ConfigurationError, match="Mask shape"):
                run_alignment(smooth_texture, smooth_texture, grid)

    def test_two_column_grid_of_image_size(self):
        """An N x 2 integer grid matching the image is still a grid."""
        rng = np.random.default_rng(5)
        image = rng.random((40, 2))
        grid = np.ones((40, 2), dtype=np.int64)

        result = run_alignment(image, image, grid)

        assert result.mask_pixels == 80

    def test_diverging_steps(self, smooth_texture, warped_candidate, interior_mask, monkeypatch):
        """Steps that keep growing stop with DIVERGED at the last accepted estimate."""
        monkeypatch.setattr(
            "lkreloc.algorithms.alignment.pseudo_inverse",
            lambda matrix, rcond=1e-10: -np.linalg.pinv(matrix),
        )
        params = AlignmentParameters(divergence_patience=1)

        result = run_alignment(smooth_texture, warped_candidate, interior_mask, parameters=params)

        assert result.status == AlignmentStatus.DIVERGED
        assert not result.ok
        assert result.iterations == 2
        assert result.history[1].delta_norm > result.history[0].delta_norm
        assert result.params == result.history[-1].params
        assert result.params.is_finite()

    def test_non_finite_step(self, smooth_texture, warped_candidate, interior_mask, monkeypatch):
        """A non-finite update stops with DIVERGED and keeps the last finite parameters."""
        calls = []

        def failing_inverse(matrix, rcond=1e-10):
            calls.append(1)
            if len(calls) == 1:
                return pseudo_inverse(matrix, rcond)
            return np.full((3, 3), np.nan)

        monkeypatch.setattr("lkreloc.algorithms.alignment.pseudo_inverse", failing_inverse)
        params = AlignmentParameters(cutoff_diffnorm=1e-9)

        result = run_alignment(smooth_texture, warped_candidate, interior_mask, parameters=params)

        assert result.status == AlignmentStatus.DIVERGED
        assert result.iterations == 1
        assert result.params == result.history[0].params
        assert result.params.is_finite()
        assert np.isfinite(result.cost)

    def test_non_finite_first_step(self, smooth_texture, warped_candidate, interior_mask, monkeypatch):
        """A non-finite first update leaves the initial parameters."""
        monkeypatch.setattr(
            "lkreloc.algorithms.alignment.pseudo_inverse",
            lambda matrix, rcond=1e-10: np.full((3, 3), np.nan),
        )

        result = run_alignment(smooth_texture, warped_candidate, interior_mask)

        assert result.status == AlignmentStatus.DIVERGED
        assert result.iterations == 0
        assert result.params == WarpParameters.identity()

    def test_empty_mask(self, smooth_texture):
        """Empty masks are rejected."""
        with pytest.raises(ConfigurationError, match="no pixels"):
            run_alignment(smooth_texture, smooth_texture, np.zeros((128, 128), dtype=np.bool_))

    def test_non_finite_image(self, smooth_texture, interior_mask):
        """Non-finite images are rejected before iterating."""
        bad = smooth_texture.copy()
        bad[50, 50] = np.nan

        with pytest.raises(ConfigurationError, match="non-finite"):
            run_alignment(smooth_texture, bad, interior_mask)

    def test_non_finite_initial(self, smooth_texture, interior_mask):
        """Non-finite initial parameters are rejected."""
        with pytest.raises(ConfigurationError):
            run_alignment(
                smooth_texture, smooth_texture, interior_mask,
                initial=WarpParameters(0.0, np.inf, 0.0),
            )

    def test_invalid_parameters(self):
        """Invalid solver parameters are rejected at construction."""
        with pytest.raises(ConfigurationError, match="cutoff_iteration"):
            AlignmentSolver(AlignmentParameters(cutoff_iteration=0))


class TestAlignmentResult:
    """Tests for AlignmentResult."""

    def test_diagnostics(self, smooth_texture, warped_candidate, interior_mask):
        """Diagnostics summarize the solve."""
        result = run_alignment(smooth_texture, warped_candidate, interior_mask)

        diagnostics = result.get_diagnostics()

        assert diagnostics["status"] == "CONVERGED"
        assert diagnostics["iterations"] == result.iterations
        assert diagnostics["valid_percent"] == 100.0
        assert diagnostics["initial_cost"] == result.history[0].cost

    def test_dict_roundtrip(self, smooth_texture, warped_candidate, interior_mask):
        """Results survive conversion to and from a dictionary."""
        result = run_alignment(smooth_texture, warped_candidate, interior_mask)

        restored = AlignmentResult.from_dict(result.to_dict())

        assert restored.params == result.params
        assert restored.status == result.status
        assert restored.iterations == result.iterations
        assert len(restored.history) == len(result.history)
        np.testing.assert_array_equal(restored.history[0].delta, result.history[0].delta)
