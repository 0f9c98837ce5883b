from typing import Any, Dict, Optional

# Family keywords, most specific first
KNOWN_TYPES = (
    "ransomware", "keylogger", "spyware", "backdoor", "rootkit", "worm",
    "virus", "miner", "downloader", "dropper", "adware", "trojan", "packed",
)


def _normalise(label: str) -> str:
    lowered = label.lower()
    for known in KNOWN_TYPES:
        if known in lowered:
            return known
    # "trojan.win32/agent" style labels: keep the leading family token
    return lowered.replace("/", ".").split(".")[0]


def infer_malware_type(vt_info: Optional[Dict[str, Any]],
                       yara_info: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Best-effort malware family for display.

    VirusTotal's threat label wins, then YARA meta.malware_type, then YARA
    tags matching a known family.
    """
    vt_info = vt_info or {}
    label = vt_info.get("threat_label")
    if label and vt_info.get("found") and vt_info.get("verdict") == "malicious":
        return {"label": _normalise(label), "source": "virustotal"}

    matches = (yara_info or {}).get("matches") or []
    for m in matches:
        meta_type = (m.get("meta") or {}).get("malware_type")
        if meta_type:
            return {"label": _normalise(str(meta_type)), "source": "yara"}

    for m in matches:
        for tag in m.get("tags") or []:
            if tag.lower() in KNOWN_TYPES:
                return {"label": tag.lower(), "source": "yara"}

    return {"label": None, "source": None}
