from __future__ import annotations

import argparse
import csv
import random
from pathlib import Path

from compilegate.core.profiles import PROFILE_COLUMNS, PROFILE_HEADER_PREFIX

# ----------------------------
# Catalog
# ----------------------------

PACKAGE = "Lcom/example/app"
METHODS_PER_CLASS = 8
SIGNATURES = ["()V", "(I)V", "()Ljava/lang/String;", "(Ljava/lang/Object;)Z", "(JJ)J"]


def class_name(index: int) -> str:
    return f"{PACKAGE}/C{index:05d};"


def method_name(index: int) -> str:
    owner = class_name(index // METHODS_PER_CLASS)
    sig = SIGNATURES[index % len(SIGNATURES)]
    return f"{owner}->m{index % METHODS_PER_CLASS}{sig}"


def dex_assignment(n_classes: int, dex_files: list[str], seed: int) -> list[str]:
    """
    Stable class -> dex mapping: the same seed always places class i in the
    same dex file, however many classes are requested.
    """
    rng = random.Random(seed)
    return [rng.choice(dex_files) for _ in range(n_classes)]


def generate_profile(
    out_path: str | Path,
    *,
    methods: int,
    classes: int,
    start: int = 0,
    dex_files: list[str] | None = None,
    seed: int = 7,
    version: str = "1",
    print_summary: bool = False,
) -> Path:
    """
    Write a synthetic text profile holding method indices [start, start+methods)
    and class indices [start, start+classes).
    """
    if methods < 0 or classes < 0 or start < 0:
        raise ValueError("methods, classes and start must be >= 0")

    dex_files = dex_files or ["base.apk"]
    last_method = start + methods
    last_class = max(start + classes, last_method // METHODS_PER_CLASS + 1)
    dex_of = dex_assignment(last_class, dex_files, seed)

    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)

    with p.open("w", encoding="utf-8", newline="") as f:
        f.write(f"{PROFILE_HEADER_PREFIX} version={version}\n")
        w = csv.writer(f, lineterminator="\n")
        w.writerow(PROFILE_COLUMNS)
        for i in range(start, start + classes):
            w.writerow([dex_of[i], "class", class_name(i)])
        for i in range(start, last_method):
            w.writerow([dex_of[i // METHODS_PER_CLASS], "method", method_name(i)])

    if print_summary:
        print(f"Wrote {p} (version={version}, methods={methods}, classes={classes}, start={start})")
    return p


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Generate a synthetic CompileGate text profile.")
    p.add_argument("--out", required=True, help="Output profile path")
    p.add_argument("--methods", type=int, default=100, help="Number of hot methods")
    p.add_argument("--classes", type=int, default=20, help="Number of resolved classes")
    p.add_argument("--start", type=int, default=0,
                   help="First catalog index (shift to produce overlapping profiles)")
    p.add_argument("--dex", default="base.apk",
                   help="Comma-separated dex files to spread classes across")
    p.add_argument("--seed", type=int, default=7, help="Random seed for the class -> dex mapping")
    p.add_argument("--version", default="1", help="Profile format version token")
    p.add_argument("--print-summary", action="store_true", help="Print generation summary to console")
    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    dex_files = [d.strip() for d in str(args.dex).split(",") if d.strip()]

    if not dex_files:
        raise SystemExit("--dex cannot be empty")
    if args.methods < 0 or args.classes < 0 or args.start < 0:
        raise SystemExit("--methods, --classes and --start must be >= 0")

    generate_profile(
        args.out,
        methods=args.methods,
        classes=args.classes,
        start=args.start,
        dex_files=dex_files,
        seed=args.seed,
        version=args.version,
        print_summary=args.print_summary,
    )


if __name__ == "__main__":
    main()
