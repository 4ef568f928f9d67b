import argparse, sys
from .options import AnonymizerOptions
from .pipeline import run_anonymization, setup_logging


def _parse_placeholder(value: str) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise argparse.ArgumentTypeError("Placeholder must not be empty.")
    return normalized


def _parse_positive_int(value: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {number}.")
    return number


def build():
    p = argparse.ArgumentParser(prog="docscrub", description="docscrub: DOCX author and metadata anonymizer")
    sp = p.add_subparsers(dest="cmd", required=True)
    a = sp.add_parser("anonymize", help="Anonymize a DOCX file")
    a.add_argument("--in", dest="inp", required=True)
    a.add_argument("--out", dest="out", required=True)
    a.add_argument("--report", dest="report", default=None, help="Write a JSON report of what changed")
    a.add_argument("--author", type=_parse_placeholder, default=None, help="Replacement author name (default: Author)")
    a.add_argument("--initials", type=_parse_placeholder, default=None, help="Replacement comment initials (default: A)")
    a.add_argument("--scrub-revision-dates", action="store_true",
                   help="Also reset w:date on tracked changes to the epoch")
    a.add_argument("--max-input-bytes", type=_parse_positive_int, default=None)
    a.add_argument("--max-entries", type=_parse_positive_int, default=None)
    a.add_argument("--debug", action="store_true")
    a.add_argument("--log", dest="log_path", default=None, help="Also write log output to this file")
    return p


def main(argv=None):
    p = build()
    a = p.parse_args(argv)

    try:
        options = AnonymizerOptions.from_env().with_overrides(
            author_placeholder=a.author,
            initials_placeholder=a.initials,
            scrub_revision_dates=True if a.scrub_revision_dates else None,
            max_input_bytes=a.max_input_bytes,
            max_entries=a.max_entries,
        )
    except ValueError as e:
        p.error(str(e))

    setup_logging(a.debug, a.log_path)

    try:
        exit_code = run_anonymization(a.inp, a.out, report_path=a.report, options=options, debug=a.debug)
    except KeyboardInterrupt:
        print("Operation cancelled by user", file=sys.stderr)
        sys.exit(130)

    if exit_code == 0:
        print(f"✅ Anonymization completed successfully: {a.out}")
    else:
        print(f"❌ Anonymization failed (exit code {exit_code})", file=sys.stderr)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
