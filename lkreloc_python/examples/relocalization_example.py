"""
Example script for keyframe relocalization with lkreloc.

This example demonstrates:
1. Loading a keyframe and a live frame (or synthesizing them)
2. Setting up the mask and solver parameters
3. Running the SE(2) alignment with per-iteration reporting
4. Saving and loading the report

Usage:
    python relocalization_example.py --ref path/to/keyframe.png --cur path/to/frame.png

Without arguments a synthetic texture and a known motion are used.
"""

import argparse
import numpy as np
from pathlib import Path
from scipy.ndimage import gaussian_filter

from lkreloc import AlignmentParameters, WarpParameters
from lkreloc.main import RelocalizationSession, AlignmentReport
from lkreloc.core.image import IntensityImage
from lkreloc.algorithms.warp import apply_warp
from lkreloc.utils.image_loader import load_image


def run_example(ref_path: str = None, cur_path: str = None):
    """
    Run relocalization example.

    Args:
        ref_path: Path to keyframe (optional, uses synthetic data if None)
        cur_path: Path to live frame (optional, uses synthetic data if None)
    """

    # === 1. Load images ===
    true_warp = None
    if ref_path and cur_path:
        ref_img = load_image(ref_path)
        cur_img = load_image(cur_path)
        print(f"Keyframe: {ref_img.width} x {ref_img.height} pixels")
        print(f"Live frame: {cur_img.width} x {cur_img.height} pixels")
    else:
        print("No images provided - creating synthetic texture...")
        rng = np.random.default_rng(42)

        h, w = 240, 320

        # Low-pass filtered noise gives a wide convergence basin
        ref_data = gaussian_filter(rng.random((h, w)), sigma=6.0)
        ref_data = (ref_data - ref_data.min()) / (ref_data.max() - ref_data.min())
        ref_img = IntensityImage.from_array(ref_data, name="synthetic_keyframe")

        true_warp = WarpParameters(theta=0.01, tx=2.0, ty=-1.5)
        cur_data = apply_warp(ref_data, true_warp.inverse())
        cur_img = IntensityImage.from_array(cur_data, name="synthetic_frame")
        print(f"Synthetic frame moved by theta={true_warp.theta}, "
              f"t=({true_warp.tx}, {true_warp.ty})")

    # === 2. Initialize session ===
    session = RelocalizationSession()

    def iteration_callback(record):
        p = record.params
        print(f"  iter {record.iteration:3d}: cost={record.cost:.5g} "
              f"|delta|={record.delta_norm:.3g} -> "
              f"theta={p.theta:.5f} tx={p.tx:.3f} ty={p.ty:.3f}")

    session.set_iteration_callback(iteration_callback)
    session.set_reference(ref_img)
    session.set_candidates(cur_img)

    # === 3. Mask: drop a 10% border, where motion pushes pixels outside ===
    h, w = ref_img.shape
    mask = np.zeros((h, w), dtype=np.bool_)
    mask[h // 10:h - h // 10, w // 10:w - w // 10] = True
    session.set_mask(mask)

    session.set_parameters(AlignmentParameters(cutoff_diffnorm=1e-3, cutoff_iteration=50))

    # === 4. Run ===
    print("\nStarting alignment...")
    report = session.run(progress=False)
    result = report.results[0]

    print(f"\nStatus: {result.status.name} after {result.iterations} iterations")
    print(f"Estimate: theta={result.params.theta:.5f} rad, "
          f"tx={result.params.tx:.3f} px, ty={result.params.ty:.3f} px")
    print(f"RMS residual: {result.rms_residual:.5g}")

    if true_warp is not None:
        err = result.params.as_vector() - true_warp.as_vector()
        print(f"Error: dtheta={err[0]:.2e}, dtx={err[1]:.3f}, dty={err[2]:.3f}")

    # === 5. Save and reload ===
    out_base = Path("relocalization_report")
    report.save(out_base)
    print(f"\nReport saved as: {out_base.with_suffix('.json')}")

    loaded = AlignmentReport.load(out_base)
    print(f"Reloaded {len(loaded.results)} result(s), all converged: {loaded.all_converged}")

    return report


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="lkreloc relocalization example")
    parser.add_argument("--ref", type=str, help="Path to keyframe")
    parser.add_argument("--cur", type=str, help="Path to live frame")
    args = parser.parse_args()

    run_example(args.ref, args.cur)
