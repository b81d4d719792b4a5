import argparse
import os
import sys

from conversion import ConversionConfig, convert_xes_to_csv
from conversion.errors import XesConversionError
from utils.header_inspector import get_file_columns


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Convert an XES event log to CSV.")
    parser.add_argument("path", help="XES file to convert (or CSV file with --inspect)")
    parser.add_argument("--output-folder", default=None,
                        help="Folder for the CSV file. Defaults to the folder of the XES file.")
    parser.add_argument("--case-id-key", default=None,
                        help="Trace attribute holding the case id. "
                             "Defaults to the first string attribute of each trace.")
    parser.add_argument("--no-bom", action="store_true", help="Do not write a UTF-8 BOM")
    parser.add_argument("--inspect", action="store_true",
                        help="Print the columns and delimiter of a CSV file instead of converting")
    parser.add_argument("--delimiter", default=None, help="Delimiter override for --inspect")
    return parser


def inspect(csv_path: str, delimiter=None) -> int:
    with open(csv_path, "rb") as f:
        columns, used_delimiter = get_file_columns(f, delimiter)
    print(f"Delimiter: {used_delimiter!r}")
    print("Columns:")
    for col in columns:
        print(f"  - {col}")
    return 0


def convert(args) -> int:
    xes_path = args.path
    output_folder = args.output_folder or os.path.dirname(os.path.abspath(xes_path))
    os.makedirs(output_folder, exist_ok=True)

    base_name = os.path.splitext(os.path.basename(xes_path))[0]
    csv_path = os.path.join(output_folder, f"{base_name}.csv")

    config = ConversionConfig(
        case_id_key=args.case_id_key or None,
        write_bom=not args.no_bom,
        verbose=True,
    )
    convert_xes_to_csv(xes_path, csv_path, config)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.inspect:
            return inspect(args.path, args.delimiter)
        return convert(args)
    except (XesConversionError, OSError, ValueError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
