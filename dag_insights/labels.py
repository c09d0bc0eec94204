#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Interactive part of the SensitivityLabelForFiles report: who connects to the
Security & Compliance center, and which label the report is scoped to.
"""
import click
from tabulate import tabulate

from dag_insights.exceptions import InputAbortedError

CANCEL_TOKEN = "c"


def resolve_user_principal_name(configured=None, prompt=click.prompt):
    if configured:
        return configured

    value = prompt(
        "User principal name for the Security & Compliance center",
        default="",
        show_default=False,
    )
    value = (value or "").strip()
    if not value:
        msg = "No user principal name given, the sensitivity label report needs one"
        raise InputAbortedError(msg)
    return value


class LabelPicker:
    """Indexed menu over the tenant's sensitivity labels.

    Blocks until a valid index is typed; `c` cancels. There is no timeout.
    """

    def __init__(self, prompt=click.prompt, echo=click.echo):
        self.prompt = prompt
        self.echo = echo

    def render(self, labels):
        rows = [
            (index, label.display_name, label.id)
            for index, label in enumerate(labels, start=1)
        ]
        return tabulate(rows, headers=["#", "Label", "Id"])

    def choose(self, labels):
        if not labels:
            msg = "The Security & Compliance center returned no sensitivity labels"
            raise InputAbortedError(msg)

        self.echo(self.render(labels))
        while True:
            answer = str(
                self.prompt(
                    f"Select a label [1-{len(labels)}] or '{CANCEL_TOKEN}' to cancel"
                )
            ).strip()

            if answer.lower() == CANCEL_TOKEN:
                msg = "Sensitivity label selection cancelled"
                raise InputAbortedError(msg)

            # only characters int() can parse
            if answer.isdecimal() and 1 <= int(answer) <= len(labels):
                return labels[int(answer) - 1]

            self.echo(f"'{answer}' is not a valid selection")
