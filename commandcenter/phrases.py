"""Phrase catalog: natural-language phrases mapped to command plans.

Rules are matched in declaration order, so when several phrases could match
the same input the one listed first wins.
"""

import shlex
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .models import CommandStep


@dataclass(frozen=True)
class PhraseRule:
    """A phrase and the steps it expands to."""
    phrase: str
    steps: Tuple[CommandStep, ...]
    category: str = ""


def _single(command: str) -> Tuple[CommandStep, ...]:
    return (CommandStep(label="", command=command),)


def _sections(*sections: Tuple[str, str], check: bool = False) -> Tuple[CommandStep, ...]:
    return tuple(CommandStep(label=label, command=command, check=check) for label, command in sections)


_STATUS = _sections(("Uptime", "uptime"), ("Memory", "free -h"), ("Storage", "df -h"), check=True)
_DOCKER_PS = _single('docker ps -a || echo "Error: Cannot list Docker containers"')
_NETWORK = _sections(("Interfaces", "ip -br addr"), ("Routing", "ip -br route"))
_IP = _sections(("Addresses", "hostname -I"), ("Detailed IP info", "ip -br addr"))
_WIFI = _sections(("WiFi Status", "iwconfig wlan0"), ("Connection Details", "nmcli device wifi list"))
_WIFI_STATUS = _sections(("WiFi Status", "iwconfig wlan0"), ("Connection Details", "nmcli connection show --active"))
_BLUETOOTH = _sections(
    ("Bluetooth Status", "sudo systemctl status bluetooth"),
    ("Paired Devices", "bluetoothctl paired-devices"),
)
_RAID = _sections(
    ("RAID Status", "cat /proc/mdstat"),
    ("Array Details", 'sudo mdadm --detail /dev/md0 2>/dev/null || echo "No RAID array found"'),
)
_PRINTERS = _sections(("Printer Status", "lpstat -p -d"), ("Print Queue", "lpq"))
_CRON = _sections(("System Cron Jobs", "sudo cat /etc/crontab"), ("User Cron Jobs", "crontab -l"))
_DOCKER_TABLE = 'docker ps --format "table {{.Names}}\\t{{.Status}}"'
_TOP5 = "ps aux --sort=-%cpu | head -n 5"


def _power_preview(action: str) -> Tuple[CommandStep, ...]:
    return _sections(
        ("Active Users", "who"),
        ("System Load", "uptime"),
        ("Active Docker Containers", _DOCKER_TABLE),
        ("Warning", f"echo \"WARNING: This will {action} the system. Type '{action} confirm' to proceed.\""),
    )


def _power_confirm(flag: str, action: str) -> Tuple[CommandStep, ...]:
    # Docker listing failures must not block the power action
    return (
        CommandStep(label="Active Users", command="who"),
        CommandStep(label="Running Processes", command=_TOP5),
        CommandStep(label="Active Docker Containers", command=_DOCKER_TABLE, check=False),
        CommandStep(
            label=f"Proceeding with {action}",
            command=f'echo "Proceeding with {action} in 1 minute..." && sudo shutdown {flag} +1',
        ),
    )


HELP_TEXT = (
    "Available commands:\n"
    "- System: status, uptime, monitor\n"
    "- Storage: disk space, disk list, smart status, raid status\n"
    "- Memory: ram, memory\n"
    "- Temperature: temp, watch temps\n"
    "- Network: ip, network, ports, wifi status, tailscale status\n"
    "- Docker: docker ps, docker images, docker status\n"
    "- Files: ls, pwd\n"
    "- Shares: share status\n"
    "- Power: shutdown, reboot (add 'confirm' to execute, 'cancel' to stop)\n"
    "- Hardware: pi hardware, eeprom status\n"
    "- Services: printers, cron list, time sync, bluetooth status"
)


PHRASES: List[PhraseRule] = [
    # System status
    PhraseRule("status", _STATUS, "System"),
    PhraseRule("system status", _STATUS, "System"),
    PhraseRule("uptime", _single("uptime"), "System"),

    # Disk and storage
    PhraseRule("disk space", _single("df -h"), "Storage"),
    PhraseRule("disk usage", _single("df -h"), "Storage"),
    PhraseRule("storage", _single("df -h"), "Storage"),
    PhraseRule("disk list", _single('lsblk -o NAME,SIZE,TYPE,MOUNTPOINT,FSTYPE || echo "lsblk not available"'), "Storage"),
    PhraseRule("smart status", _single('sudo smartctl -H /dev/sda || echo "SMART not available for /dev/sda"'), "Storage"),

    # Memory
    PhraseRule("memory", _single("free -h"), "Memory"),
    PhraseRule("ram", _single("free -h"), "Memory"),
    PhraseRule("memory usage", _single("free -h"), "Memory"),

    # Temperature and hardware
    PhraseRule("temperature", _single("vcgencmd measure_temp"), "Temperature"),
    PhraseRule("temp", _single("vcgencmd measure_temp"), "Temperature"),
    PhraseRule("cpu temp", _single("vcgencmd measure_temp"), "Temperature"),
    PhraseRule("watch temps", _sections(
        ("CPU Temperature", "vcgencmd measure_temp"),
        ("Disk Temperature",
         'sudo smartctl -A /dev/sda | grep Temperature_Celsius || echo "No disk temperature available"'),
    ), "Temperature"),

    # Processes
    PhraseRule("processes", _single("ps aux | head -n 10"), "System"),
    PhraseRule("top processes", _single(_TOP5), "System"),

    # Network
    PhraseRule("network", _NETWORK, "Network"),
    PhraseRule("ip", _IP, "Network"),
    PhraseRule("network status", _sections(
        ("Network Interfaces", "ip -br addr"), ("Routing Table", "ip -br route"),
    ), "Network"),
    PhraseRule("ports", _single("ss -tuln"), "Network"),
    PhraseRule("connections", _single("ss -tuln"), "Network"),

    # Files
    PhraseRule("ls", _single("ls -lah"), "Files"),
    PhraseRule("list", _single("ls -lah"), "Files"),
    PhraseRule("files", _single("ls -lah"), "Files"),
    PhraseRule("pwd", _single("pwd"), "Files"),
    PhraseRule("current dir", _single("pwd"), "Files"),

    # Docker
    PhraseRule("docker ps", _DOCKER_PS, "Docker"),
    PhraseRule("docker containers", _DOCKER_PS, "Docker"),
    PhraseRule("docker images", _single('docker images || echo "Error: Cannot list Docker images"'), "Docker"),
    PhraseRule("docker status", _single('docker info || echo "Error: Cannot get Docker status"'), "Docker"),
    PhraseRule("docker version", _single('docker version || echo "Error: Cannot get Docker version"'), "Docker"),

    # Monitoring
    PhraseRule("monitor", _sections(
        ("System Load", "uptime"),
        ("Memory Usage", "free -h"),
        ("Storage Usage", "df -h"),
        ("Temperature", "vcgencmd measure_temp"),
        ("Top Processes", _TOP5),
    ), "System"),

    # Shares
    PhraseRule("share status", _sections(
        ("Samba Status", 'sudo systemctl status smbd || echo "Samba not running"'),
        ("NFS Status", 'sudo systemctl status nfs-kernel-server || echo "NFS not running"'),
    ), "Shares"),

    # Power
    PhraseRule("shutdown", _power_preview("shutdown"), "Power"),
    PhraseRule("shutdown confirm", _power_confirm("-h", "shutdown"), "Power"),
    PhraseRule("reboot", _power_preview("reboot"), "Power"),
    PhraseRule("reboot confirm", _power_confirm("-r", "reboot"), "Power"),
    PhraseRule("shutdown cancel", _single('sudo shutdown -c && echo "Shutdown/reboot cancelled."'), "Power"),
    PhraseRule("shutdown status", _sections(
        ("Active Users", "who"),
        ("System Load", "uptime"),
        ("Active Docker Containers", _DOCKER_TABLE),
        ("Top Processes", _TOP5),
    ), "Power"),

    # Network services
    PhraseRule("tailscale", _sections(("Tailscale Status", "sudo tailscale status")), "Network"),
    PhraseRule("tailscale status", _sections(("Tailscale Status", "sudo tailscale status")), "Network"),
    PhraseRule("wifi", _WIFI, "Network"),
    PhraseRule("wifi status", _WIFI_STATUS, "Network"),
    PhraseRule("bluetooth", _BLUETOOTH, "Services"),
    PhraseRule("bluetooth status", _BLUETOOTH, "Services"),

    # Storage services
    PhraseRule("raid", _RAID, "Storage"),
    PhraseRule("raid status", _RAID, "Storage"),
    PhraseRule("smart monitor", _sections(
        ("SMART Status", "sudo smartctl -H /dev/sda"),
        ("SMART Attributes", "sudo smartctl -A /dev/sda"),
    ), "Storage"),
    PhraseRule("disk events", _sections(("Recent Disk Events", "sudo journalctl -u udisks2 -n 20")), "Storage"),

    # System services
    PhraseRule("printers", _PRINTERS, "Services"),
    PhraseRule("printer status", _PRINTERS, "Services"),
    PhraseRule("cron list", _CRON, "Services"),
    PhraseRule("cron status", _CRON, "Services"),
    PhraseRule("time sync", _sections(
        ("Time Sync Status", "timedatectl"),
        ("NTP Status", "sudo systemctl status systemd-timesyncd"),
    ), "Services"),

    # Hardware
    PhraseRule("pi hardware", _sections(
        ("Hardware Info", "cat /proc/cpuinfo"),
        ("Memory Info", 'grep -E "MemTotal|MemFree|MemAvailable" /proc/meminfo'),
        ("USB Devices", "lsusb"),
    ), "Hardware"),
    PhraseRule("eeprom status", _sections(("Firmware Status", "sudo rpi-eeprom-update")), "Hardware"),

    PhraseRule("help", _single(f"printf '%s\\n' {shlex.quote(HELP_TEXT)}"), "Help"),
]


class PhraseTable:
    """Ordered, lookup-friendly view over a list of phrase rules."""

    def __init__(self, rules: Optional[List[PhraseRule]] = None):
        self.rules: List[PhraseRule] = list(rules if rules is not None else PHRASES)
        self._by_phrase: Dict[str, PhraseRule] = {}
        for rule in self.rules:
            # First declaration wins for duplicate phrases
            self._by_phrase.setdefault(rule.phrase, rule)

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def exact(self, phrase: str) -> Optional[PhraseRule]:
        return self._by_phrase.get(phrase)

    def first_containing_all(self, parts: List[str]) -> Optional[PhraseRule]:
        """First rule whose phrase contains every part as a substring."""
        for rule in self.rules:
            if all(part in rule.phrase for part in parts):
                return rule
        return None

    def first_containing_any(self, words: List[str]) -> Optional[Tuple[PhraseRule, str]]:
        """First rule whose phrase contains any of the words, and that word."""
        for rule in self.rules:
            for word in words:
                if word in rule.phrase:
                    return rule, word
        return None

    def phrases(self) -> List[str]:
        return [rule.phrase for rule in self.rules]

    def categories(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for rule in self.rules:
            grouped.setdefault(rule.category or "Other", []).append(rule.phrase)
        return grouped
