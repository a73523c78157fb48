"""Sample artifacts and indicator feeds shared by the test suites."""

import io
import json
import sqlite3
import tarfile
from contextlib import closing
from pathlib import Path


PEGASUS_PROCESS = "/private/var/db/com.apple.xpc.roleaccountd.staging/rolexd"

SHUTDOWN_LOG = """\
After 3.21s, these clients are still here:
        remaining client pid: 412 (/usr/libexec/backboardd)
        remaining client pid: 733 (/private/var/db/com.apple.xpc.roleaccountd.staging/rolexd)
SIGTERM: [1612345678]
After 0.54s, these clients are still here:
        remaining client pid: 97 (/usr/libexec/backboardd)
SIGTERM: [1612449999]
"""

LOGCAT = """\
--------- beginning of main
03-17 10:15:42.123  1234  1250 I PackageManager: Package added: pkg=com.spy.tracker
03-17 10:15:43.001  1234  1250 I PermissionManager: grantRuntimePermission pkg=com.spy.tracker android.permission.READ_SMS
03-17 10:15:44.500  2200  2201 D ActivityManager: Start proc 2201:com.android.chrome/u0a12
I/ActivityManager(  880): Displayed com.example.notes/.MainActivity
"""

FEED_RECORDS = [
    {
        "id": "pegasus-rolexd",
        "pattern": PEGASUS_PROCESS,
        "patternKind": "literal",
        "category": "pegasus",
        "severity": "critical",
        "source": "citizen-lab",
        "addedAt": "2021-07-18T00:00:00Z",
    },
    {
        "id": "predator-domain",
        "pattern": r"(?:[a-z0-9-]+\.)*cdn-predator\.net",
        "patternKind": "regex",
        "category": "predator",
        "severity": "high",
        "source": "mvt",
    },
    {
        "id": "stalker-pkg",
        "pattern": "com.spy.tracker",
        "patternKind": "literal",
        "category": "stalkerware",
        "severity": "high",
    },
    {
        "id": "staging-glob",
        "pattern": "/private/var/tmp/*",
        "patternKind": "path-glob",
        "category": "other",
        "severity": "low",
    },
]


def feed_jsonl(records=None, version="2024.06"):
    """JSON-lines feed text with a version header line."""
    lines = ["# test feed", json.dumps({"version": version})]
    lines += [json.dumps(record) for record in (records or FEED_RECORDS)]
    return "\n".join(lines) + "\n"


def data_usage_samples(app, outbound, start=1717200000, step=3600):
    return [
        {"app": app, "bytes_out": value, "bytes_in": 1000, "bucket": start + i * step}
        for i, value in enumerate(outbound)
    ]


def sysdiagnose_tar_bytes():
    """A minimal sysdiagnose archive built in memory."""
    files = {
        "sysdiagnose_2024/ps.txt": (
            "USER   PID  %CPU %MEM      VSZ    RSS   TT  STAT STARTED      TIME COMMAND\n"
            "root     1   0.0  0.1  4300000   9000   ??  Ss   9:00AM   0:05.00 /sbin/launchd\n"
            "mobile 733   0.0  0.1  4300000   9000   ??  Ss   9:00AM   0:00.10 "
            "/private/var/db/com.apple.xpc.roleaccountd.staging/rolexd -d\n"
        ),
        "sysdiagnose_2024/network-info/netstat.txt": (
            "Active Internet connections\n"
            "Proto Recv-Q Send-Q  Local Address          Foreign Address        (state)\n"
            "tcp4       0      0  192.168.1.20.50123     api.cdn-predator.net.443  ESTABLISHED\n"
            "tcp4       0      0  *.62078                *.*                    LISTEN\n"
        ),
        "sysdiagnose_2024/logs/unrelated.log": "nothing to see\n",
    }
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _place(root: Path, file_id: str) -> Path:
    target = root / file_id[:2] / file_id
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def build_backup(root: Path) -> Path:
    """Create an unencrypted iOS backup layout with a manifest and three databases."""
    root.mkdir(parents=True, exist_ok=True)
    usage_id = "a1" + "0" * 38
    safari_id = "b2" + "0" * 38
    sms_id = "c3" + "0" * 38

    with closing(sqlite3.connect(str(root / "Manifest.db"))) as manifest:
        manifest.execute("CREATE TABLE Files (fileID TEXT, domain TEXT, relativePath TEXT, flags INTEGER)")
        manifest.executemany("INSERT INTO Files VALUES (?, ?, ?, ?)", [
            (usage_id, "WirelessDomain", "Library/Databases/DataUsage.sqlite", 1),
            (safari_id, "AppDomain-com.apple.mobilesafari", "Library/Safari/History.db", 1),
            (sms_id, "HomeDomain", "Library/SMS/sms.db", 1),
            ("d4" + "0" * 38, "HomeDomain", "Library/Preferences/com.apple.Preferences.plist", 1),
            ("e5" + "0" * 38, "HomeDomain", "Media/DCIM/100APPLE/IMG_0001.JPG", 1),
            ("f6" + "0" * 38, "HomeDomain", "Library/SMS/Drafts", 2),
        ])
        manifest.commit()

    with closing(sqlite3.connect(str(_place(root, usage_id)))) as usage:
        usage.execute("CREATE TABLE ZPROCESS (Z_PK INTEGER, ZPROCNAME TEXT, ZBUNDLENAME TEXT)")
        usage.executemany("INSERT INTO ZPROCESS VALUES (?, ?, ?)", [
            (1, "com.apple.WebKit.Networking", "com.apple.WebKit"),
            (2, "bh", None),
        ])
        usage.commit()

    with closing(sqlite3.connect(str(_place(root, safari_id)))) as history:
        history.execute("CREATE TABLE history_items (id INTEGER, url TEXT, visit_count INTEGER)")
        history.executemany("INSERT INTO history_items VALUES (?, ?, ?)", [
            (1, "https://www.example.org/news", 3),
            (2, "https://login.cdn-predator.net/x?id=1", 1),
        ])
        history.commit()

    with closing(sqlite3.connect(str(_place(root, sms_id)))) as sms:
        sms.execute("CREATE TABLE message (ROWID INTEGER, text TEXT)")
        sms.execute("INSERT INTO message VALUES (1, 'Track your parcel https://track.cdn-predator.net/p')")
        sms.commit()

    return root
