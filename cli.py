"""
Command-line consumer of the scanning pipeline.

The desktop shell spawns this and reads a JSON document from stdout, so
nothing but JSON may ever be printed there; logs go to stderr.

    maiware-scan sample.exe --summary
    maiware-scan a.exe b.dll --callgraph --tie-break confident --pretty
"""
import argparse
import json
import os
import sys

from config import TIE_BREAK_POLICIES, configure_logging, load_config
from Scanners.easy_results import summarize
from Scanners.static_analysis import analyze_file

EXIT_OK = 0
EXIT_BAD_INPUT = 2


def build_parser(config):
    parser = argparse.ArgumentParser(
        prog="maiware-scan", description="Scan files for malware and print JSON")
    parser.add_argument("paths", nargs="+", metavar="PATH")
    parser.add_argument("--models-dir", default=config["MODELS_DIR"])
    parser.add_argument("--yara-dir", default=config["YARA_DIR"])
    parser.add_argument("--tie-break", choices=TIE_BREAK_POLICIES, default=config["TIE_BREAK"])
    parser.add_argument("--callgraph", action="store_true", default=config["CALLGRAPH"],
                        help="recover the call graph with angr (slow)")
    parser.add_argument("--vt-key", default=config["VT_API_KEY"],
                        help="VirusTotal API key (defaults to $VT_API_KEY)")
    parser.add_argument("--summary", action="store_true",
                        help="print the short display summary instead of the full report")
    parser.add_argument("--pretty", action="store_true", help="indent the JSON output")
    parser.add_argument("--log-level", default=config["LOG_LEVEL"])
    return parser


def main(argv=None):
    config = load_config()
    args = build_parser(config).parse_args(argv)
    configure_logging(args.log_level)

    missing = [p for p in args.paths if not os.path.isfile(p)]
    if missing:
        json.dump({"ok": False, "error": f"Not a file: {', '.join(missing)}"}, sys.stdout)
        sys.stdout.write("\n")
        return EXIT_BAD_INPUT

    reports = []
    for path in args.paths:
        report = analyze_file(
            path,
            vt_api_key=args.vt_key,
            models_dir=args.models_dir,
            yara_dir=args.yara_dir,
            tie_break=args.tie_break,
            callgraph=args.callgraph,
            callgraph_max_nodes=config["CALLGRAPH_MAX_NODES"],
        )
        reports.append(summarize(report) if args.summary else report)

    output = reports[0] if len(reports) == 1 else reports
    json.dump(output, sys.stdout, indent=2 if args.pretty else None)
    sys.stdout.write("\n")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
