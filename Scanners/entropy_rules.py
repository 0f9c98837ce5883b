VERY_HIGH_OVERALL = 7.3
HIGH_OVERALL = 6.8
HIGH_SECTION = 7.2

# Section names that legitimate toolchains never emit
SUSPICIOUS_SECTION_NAMES = {".asdf", ".xyz", ".evil", ".packed", ".themida",
                            ".vmp0", ".vmp1", ".aspack", ".adata", ".petite"}


def interpret_pe_entropy(report: dict) -> dict:
    """
    Takes the output from analyze_pe_entropy() and adds interpretation flags.

    Returns:
    {
        "flags": [...],
        "risk_score": 0-100,
        "notes": [...]
    }
    """
    flags = []
    notes = []
    risk_score = 0

    if not report.get("is_pe"):
        return {
            "flags": ["NOT_A_PE_FILE"],
            "risk_score": 0,
            "notes": ["Entropy interpretation skipped: file is not PE"]
        }

    overall = report.get("overall_entropy")
    if overall is not None:
        if overall > VERY_HIGH_OVERALL:
            flags.append("VERY_HIGH_OVERALL_ENTROPY")
            notes.append(f"Overall entropy {overall:.2f} is unusually high.")
            risk_score += 30
        elif overall > HIGH_OVERALL:
            flags.append("HIGH_OVERALL_ENTROPY")
            risk_score += 15

    for sec in report.get("sections", []):
        name = sec["name"]
        ent = sec.get("entropy")
        characteristics = set(sec.get("characteristics") or [])

        if ent is not None and ent > HIGH_SECTION:
            flags.append(f"HIGH_ENTROPY_SECTION:{name}")
            notes.append(f"Section {name} has high entropy ({ent:.2f}).")
            risk_score += 20

        if name.lower() in SUSPICIOUS_SECTION_NAMES:
            flags.append(f"SUSPICIOUS_SECTION_NAME:{name}")
            notes.append(f"Section {name} has a suspicious name.")
            risk_score += 10

        if "UPX" in name.upper():
            flags.append("UPX_PACKED")
            notes.append("File contains UPX sections; likely packed.")
            risk_score += 25

        # self-modifying code / unpacking stubs
        if {"MEM_WRITE", "MEM_EXECUTE"} <= characteristics:
            flags.append(f"WRITABLE_EXECUTABLE_SECTION:{name}")
            notes.append(f"Section {name} is both writable and executable.")
            risk_score += 15

    return {
        "flags": sorted(set(flags)),
        "risk_score": min(risk_score, 100),
        "notes": notes
    }
