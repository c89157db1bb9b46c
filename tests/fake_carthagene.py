"""Line-oriented stand-in for the CarthaGene shell, used by the engine and pipeline tests.

Understands just enough of the command language to drive a grouping and
ordering run: markers ending in ``_d`` are put in group 2, all others in
group 1.
"""

import sys

TWIN_SUFFIX = "_d"


def say(text=""):
    sys.stdout.write(text + "\n")
    sys.stdout.flush()


def main():
    markers = []
    selected = []
    groups = {}

    for raw in sys.stdin:
        line = raw.strip()
        if not line:
            continue
        parts = line.split()
        command = parts[0]

        if command == "exit":
            break
        if command == "puts":
            say(" ".join(parts[1:]))
        elif command == "crash":
            sys.exit(3)
        elif command == "twice":
            say("first")
            say("second")
        elif command == "dsload":
            with open(parts[1], encoding="utf-8") as handle:
                markers = [row.split()[0][1:] for row in handle if row.startswith("*")]
            say(f"Data set loaded: {len(markers)} markers")
        elif command == "mrkinfo":
            say("Num    Names : Sets Merges")
            for index, name in enumerate(markers, start=1):
                say(f"{index:5d} {name:>8} : 1")
        elif command in ("mrklod2p", "mrkfr2p", "mrkdist2p"):
            value = {"mrklod2p": "4.25", "mrkfr2p": "0.10", "mrkdist2p": "10.0"}[command]
            say("Marker " + " ".join(str(i) for i in range(1, len(markers) + 1)))
            for i in range(1, len(markers) + 1):
                say(" ".join([str(i)] + [value] * (len(markers) - i)))
        elif command == "group":
            groups = {1: [], 2: []}
            for index, name in enumerate(markers, start=1):
                groups[2 if name.endswith(TWIN_SUFFIX) else 1].append(index)
            groups = {key: members for key, members in groups.items() if members}
            say("Linkage Groups :")
            say(" Group Id -- Marker(s) Id(s)")
            for key, members in groups.items():
                say(f"    {key}     -- " + " ".join(str(m) for m in members))
        elif command == "mrkselset":
            selected = groups.get(int(parts[-1].rstrip("]")), [])
        elif command == "nicemapd":
            say("Building map...")
        elif command == "bestprintd":
            say("Map 7 : log10-likelihood = -12.50")
            say("Marker   Cumulative")
            for step, index in enumerate(selected):
                say(f"{markers[index - 1]} {step * 5.0:.1f} cM")
        else:
            say(f"ok {line}")


if __name__ == "__main__":
    main()
