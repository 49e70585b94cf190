"""devtop Quick Start: print GPU metrics the way a monitor would poll them."""

import logging
import time

import devtop

logging.basicConfig(level=logging.INFO)

# 1. Start the backends (AMD is auto-detected; Apple and NVIDIA are opt-in)
devtop.startup({
    "amd-refresh": "1s",
    # "apple": "true",
    # "nvidia": "true",
})

# 2. Poll the registry like a UI refresh loop
for _ in range(5):
    temps: dict[str, int] = {}
    mems: dict[str, devtop.MemoryInfo] = {}
    usage: dict[str, int] = {}

    errors = devtop.update_temp(temps)
    errors |= devtop.update_mem(mems)
    errors |= devtop.update_usage(usage)

    for label in sorted(usage):
        mem = mems.get(label)
        mem_text = f"{mem.used_percent:5.1f}% of {mem.total / 1024**3:.1f} GiB" if mem else "n/a"
        temp = temps.get(label)
        print(f"{label:<24} busy {usage[label]:3d}%  mem {mem_text}  temp {temp if temp is not None else '-'}")
    for label, err in errors.items():
        print(f"{label}: {err}")
    time.sleep(1)

# 3. Shutdown (also runs at interpreter exit)
devtop.shutdown()
