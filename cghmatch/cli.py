"""Command line matching of a template image against scene image files.

Usage:
    python -m cghmatch template.png scene1.png [scene2.png ...] [--step 2] [--bounded]
    python -m cghmatch panda_face.png frame.png --prescale 3.5 --save-votes out/
"""

import argparse
import os
import sys
from typing import List, Optional

import cv2

from ._constants import DEFAULT_ANGSTEP, DEFAULT_KBLUR, DEFAULT_KSOBEL, DEFAULT_MAGTHR
from .encoder import EncoderParams
from .locator import normalize_votes
from .matcher import IDEAL_MODES, GradientMatcher
from .voting import VoteParams


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cghmatch",
        description="Locate a template shape in scene images with a "
                    "Generalized Hough transform on gradient orientations",
    )
    parser.add_argument("template", help="Template image file (read as grayscale)")
    parser.add_argument("scenes", nargs="+", help="Scene image file(s) to search")
    parser.add_argument(
        "--prescale", type=float, default=1.0,
        help="Resize factor applied to the template (default: 1.0)",
    )
    parser.add_argument(
        "--blur", type=int, default=DEFAULT_KBLUR,
        help=f"Gaussian pre-blur kernel, odd, 0/1 disables (default: {DEFAULT_KBLUR})",
    )
    parser.add_argument(
        "--sobel", type=int, default=DEFAULT_KSOBEL,
        help=f"Sobel aperture size (default: {DEFAULT_KSOBEL})",
    )
    parser.add_argument(
        "--magthr", type=float, default=DEFAULT_MAGTHR,
        help=f"Gradient magnitude threshold as a fraction of the maximum "
             f"(default: {DEFAULT_MAGTHR})",
    )
    parser.add_argument(
        "--angstep", type=float, default=DEFAULT_ANGSTEP,
        help=f"Orientation steps per full turn, 4-254 (default: {DEFAULT_ANGSTEP:g})",
    )
    parser.add_argument(
        "--clahe", type=float, default=None,
        help="CLAHE clip limit; equalization is off when omitted",
    )
    parser.add_argument(
        "--step", type=int, default=1,
        help="Visit every N-th row and column while voting (default: 1)",
    )
    parser.add_argument(
        "--bounded", action="store_true",
        help="Only vote from pixels at least half a template away from the border",
    )
    parser.add_argument(
        "--ideal", choices=IDEAL_MODES, default="self_match",
        help="Confidence denominator (default: self_match)",
    )
    parser.add_argument(
        "--save-votes", type=str, default=None, metavar="DIR",
        help="Write a normalized vote image <scene>_votes.png per scene into DIR",
    )
    parser.add_argument("--verbose", action="store_true",
                        help="Print template details to stderr")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        encoder = EncoderParams(kblur=args.blur, ksobel=args.sobel,
                                magthr=args.magthr, angstep=args.angstep,
                                clahe_clip=args.clahe)
        vote_params = VoteParams(loop_step=args.step, bounded=args.bounded)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    matcher = GradientMatcher(encoder=encoder, vote_params=vote_params,
                              ideal=args.ideal, verbose=args.verbose)
    try:
        matcher.load_template(args.template, prescale=args.prescale)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    rows, cols = matcher.footprint_size
    print(f"Loaded template {args.template}: {cols}x{rows}, "
          f"ideal votes={matcher.max_votes}")

    if args.save_votes:
        os.makedirs(args.save_votes, exist_ok=True)

    status = 0
    for path in args.scenes:
        scene = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
        if scene is None:
            print(f"Error: cannot read scene image: {path}", file=sys.stderr)
            status = 1
            continue

        _, acc, result = matcher.process(scene)
        x, y = result.point
        print(f"{path}: x={x} y={y} votes={result.votes} "
              f"confidence={result.confidence:.2f}")

        if args.save_votes:
            stem = os.path.splitext(os.path.basename(path))[0]
            out_path = os.path.join(args.save_votes, f"{stem}_votes.png")
            cv2.imwrite(out_path, normalize_votes(acc))

    return status


if __name__ == "__main__":
    sys.exit(main())
