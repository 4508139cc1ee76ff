from typing import Any, MutableSequence, Sequence


def _is_empty_collection(value: Any) -> bool:
    return isinstance(value, (dict, list)) and not value


def collect_differences(desired: Any, actual: Any, none_as_empty: bool = False, strict: bool = False,
                        path: MutableSequence[str] = None, diffs: MutableSequence[str] = None) -> Sequence[str]:
    """Collects the paths (eg. 'metadata.team' or 'policies.[1]') where the actual value differs from the desired one.

    Only keys present in the desired dictionaries are compared; extra keys in the actual value are ignored, unless
    'strict' is True, in which case extra keys in nested dictionaries are differences too (top-level extra keys, such
    as server-assigned IDs, are still ignored). When 'none_as_empty' is True, a missing or None actual value equals an
    empty desired list or dictionary."""
    diffs: MutableSequence[str] = [] if diffs is None else diffs
    path: MutableSequence[str] = [] if path is None else path

    if none_as_empty and actual is None and _is_empty_collection(desired):
        return diffs

    if desired is None and actual is None:
        return diffs

    if desired is None or actual is None or type(desired) != type(actual):
        diffs.append(".".join(path))
        return diffs

    if isinstance(desired, dict):
        for key, desired_value in desired.items():
            path.append(key)
            try:
                if key not in actual and not (none_as_empty and _is_empty_collection(desired_value)):
                    diffs.append(".".join(path))
                else:
                    collect_differences(desired_value, actual.get(key), none_as_empty, strict, path, diffs)
            finally:
                path.pop()
        if strict and path:
            for key in actual:
                if key not in desired:
                    diffs.append(".".join(path + [key]))
        return diffs

    if isinstance(desired, list):
        if len(desired) != len(actual):
            diffs.append(".".join(path))
        else:
            for index, desired_value in enumerate(desired):
                path.append(f"[{index}]")
                try:
                    collect_differences(desired_value, actual[index], none_as_empty, strict, path, diffs)
                finally:
                    path.pop()
        return diffs

    if desired != actual:
        diffs.append(".".join(path))

    return diffs
