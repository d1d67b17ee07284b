from collections import Counter

from prettytable import PrettyTable

from .params import Outcome

TITLE_WIDTH = 50


def print_banner(title):
    banner = "=" * 90
    print(f"{banner}\n{title.center(90)}\n{banner}")


def print_separator():
    print("-" * 40)


def _shorten(text, width=TITLE_WIDTH):
    text = text or ''
    return text if len(text) <= width else text[:width - 3] + '...'


def format_summary(results):
    table = PrettyTable()
    table.field_names = ["MR", "Title", "Outcome", "Actions"]
    table.align["Title"] = "l"
    table.align["Actions"] = "l"
    for result in results:
        table.add_row([result.reference, _shorten(result.title), result.outcome.value,
                       ", ".join(result.actions) or "-"])

    counts = Counter(result.outcome for result in results)
    totals = ", ".join(f"{outcome.value}: {counts[outcome]}" for outcome in Outcome if counts[outcome])
    return f"{table.get_string()}\nProcessed {len(results)} merge requests ({totals or 'none'})"


def print_summary(results):
    print_banner("Merge Request Automator Summary")
    print(format_summary(results))
