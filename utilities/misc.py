import csv, json
from enum import Enum

import numpy as np


# ---------------------------------------
# Others
# ---------------------------------------

def jsonable(obj):
    if hasattr(obj, "get_config"): return obj.get_config()
    if isinstance(obj, Enum): return obj.value
    if isinstance(obj, np.ndarray): return obj.tolist()
    if isinstance(obj, np.generic): return obj.item()
    if isinstance(obj, (list, tuple)): return [jsonable(x) for x in obj]
    if isinstance(obj, dict): return {k: jsonable(v) for k, v in obj.items()}
    try:
        json.dumps(obj)
        return obj
    except TypeError:
        return str(obj)


def to_csv(csv_path, mode, data):
    with open(csv_path, mode, newline="") as f:
        csv.writer(f).writerow(data)
