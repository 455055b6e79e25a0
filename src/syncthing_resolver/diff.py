# Copyright 2020 Least Authority TFA GmbH
# See COPYING for details.

"""
Line-based comparison of two texts, and ways to render the result.

``diff`` is total: any two strings (including empty ones) can be
compared. It uses ``difflib.SequenceMatcher`` with the "junk" heuristic
turned off so that the result depends only on the input; the cost is
O(n*m) in the worst case for very large inputs.
"""

from difflib import (
    SequenceMatcher,
)
from html import (
    escape,
)

import attr
from attr.validators import (
    in_,
    instance_of,
    optional,
    deep_iterable,
)

UNCHANGED = u"unchanged"
ADDED = u"added"
REMOVED = u"removed"


@attr.s(frozen=True)
class LineChange(object):
    """
    One line of a comparison.

    :ivar unicode kind: ``unchanged``, ``added`` or ``removed``.
    :ivar int old_lineno: 1-based line number in the first text (None
        for an added line).
    :ivar int new_lineno: 1-based line number in the second text (None
        for a removed line).
    """
    kind = attr.ib(validator=in_((UNCHANGED, ADDED, REMOVED)))
    text = attr.ib(validator=instance_of(str))
    old_lineno = attr.ib(validator=optional(instance_of(int)))
    new_lineno = attr.ib(validator=optional(instance_of(int)))


@attr.s(frozen=True)
class DiffResult(object):
    """
    The comparison of ``source_a`` (old) with ``source_b`` (new).

    :ivar bool endings_differ: the texts have the same lines but differ in
        their line endings or final newline, which the line changes do
        not show.
    """
    source_a = attr.ib(validator=instance_of(str))
    source_b = attr.ib(validator=instance_of(str))
    changes = attr.ib(
        converter=tuple,
        validator=deep_iterable(instance_of(LineChange)),
    )
    endings_differ = attr.ib(default=False, validator=instance_of(bool))

    def _of_kind(self, kind):
        return tuple(change for change in self.changes if change.kind == kind)

    @property
    def added(self):
        return self._of_kind(ADDED)

    @property
    def removed(self):
        return self._of_kind(REMOVED)

    @property
    def unchanged(self):
        return self._of_kind(UNCHANGED)

    @property
    def is_identical(self):
        return all(change.kind == UNCHANGED for change in self.changes)


def _opcodes(lines_a, lines_b):
    """
    The matching of ``lines_a`` against ``lines_b``.

    ``SequenceMatcher`` prefers matches early in its first sequence, so
    the pair is always matched in the same order and the opcodes are
    mirrored when the arguments came the other way round.
    """
    if lines_a <= lines_b:
        return SequenceMatcher(None, lines_a, lines_b, autojunk=False).get_opcodes()
    mirrored = {"delete": "insert", "insert": "delete"}
    return [
        (mirrored.get(tag, tag), a_start, a_end, b_start, b_end)
        for tag, b_start, b_end, a_start, a_end
        in SequenceMatcher(None, lines_b, lines_a, autojunk=False).get_opcodes()
    ]


def diff(text_a, text_b, source_a=u"a", source_b=u"b"):
    """
    Compare two texts line by line.

    A replaced block comes out as its removed lines followed by its added
    lines. ``diff(b, a)`` reports the same lines as ``diff(a, b)`` with
    added and removed swapped.

    :returns DiffResult: the comparison.
    """
    lines_a = text_a.splitlines()
    lines_b = text_b.splitlines()
    changes = []
    for tag, a_start, a_end, b_start, b_end in _opcodes(lines_a, lines_b):
        if tag == "equal":
            for offset in range(a_end - a_start):
                changes.append(LineChange(
                    kind=UNCHANGED,
                    text=lines_a[a_start + offset],
                    old_lineno=a_start + offset + 1,
                    new_lineno=b_start + offset + 1,
                ))
            continue
        for index in range(a_start, a_end):
            changes.append(LineChange(
                kind=REMOVED,
                text=lines_a[index],
                old_lineno=index + 1,
                new_lineno=None,
            ))
        for index in range(b_start, b_end):
            changes.append(LineChange(
                kind=ADDED,
                text=lines_b[index],
                old_lineno=None,
                new_lineno=index + 1,
            ))
    return DiffResult(
        source_a=source_a,
        source_b=source_b,
        changes=changes,
        endings_differ=text_a != text_b and lines_a == lines_b,
    )


def _hunk_bounds(changes, context):
    """
    :returns list[tuple[int, int]]: ``[start, end)`` index ranges of
        ``changes`` to show, merging hunks whose context would overlap.
    """
    count = len(changes)
    bounds = []
    for index, change in enumerate(changes):
        if change.kind == UNCHANGED:
            continue
        start = max(index - context, 0)
        end = min(index + context + 1, count)
        if bounds and start <= bounds[-1][1]:
            bounds[-1] = (bounds[-1][0], end)
        else:
            bounds.append((start, end))
    return bounds


def _format_range(lines_before, length):
    beginning = lines_before + 1
    if length == 1:
        return u"{}".format(beginning)
    if length == 0:
        beginning -= 1
    return u"{},{}".format(beginning, length)


_PREFIXES = {
    UNCHANGED: u" ",
    ADDED: u"+",
    REMOVED: u"-",
}


def render_unified(result, context=3):
    """
    :param DiffResult result: what to render.
    :param int context: unchanged lines to show around each change.

    :returns unicode: the comparison in unified diff format, or the empty
        string if the texts are identical.
    """
    if result.is_identical:
        return u""
    lines = [
        u"--- {}".format(result.source_a),
        u"+++ {}".format(result.source_b),
    ]
    changes = result.changes
    for start, end in _hunk_bounds(changes, context):
        before = changes[:start]
        hunk = changes[start:end]
        lines.append(u"@@ -{} +{} @@".format(
            _format_range(
                sum(1 for c in before if c.kind != ADDED),
                sum(1 for c in hunk if c.kind != ADDED),
            ),
            _format_range(
                sum(1 for c in before if c.kind != REMOVED),
                sum(1 for c in hunk if c.kind != REMOVED),
            ),
        ))
        lines.extend(
            _PREFIXES[change.kind] + change.text
            for change in hunk
        )
    return u"\n".join(lines) + u"\n"


_PALETTES = {
    False: {ADDED: u"#dfd", REMOVED: u"#fee8e9"},
    True: {ADDED: u"#dbe9fb", REMOVED: u"#fde5cb"},
}


def render_html(result, colorblind=False):
    """
    Render a side-by-side-numbered HTML table.

    :param bool colorblind: use a blue/orange palette instead of
        green/red.

    :returns unicode: an HTML fragment.
    """
    palette = _PALETTES[bool(colorblind)]
    rows = []
    for change in result.changes:
        style = u""
        if change.kind in palette:
            style = u' style="background-color: {}"'.format(palette[change.kind])
        rows.append(
            u'<tr class="diff-{kind}"{style}>'
            u'<td class="diff-lineno">{old}</td>'
            u'<td class="diff-lineno">{new}</td>'
            u'<td class="diff-sign">{sign}</td>'
            u'<td class="diff-text"><pre>{text}</pre></td>'
            u'</tr>'.format(
                kind=change.kind,
                style=style,
                old=u"" if change.old_lineno is None else change.old_lineno,
                new=u"" if change.new_lineno is None else change.new_lineno,
                sign=escape(_PREFIXES[change.kind].strip()),
                text=escape(change.text),
            )
        )
    return (
        u'<table class="diff{extra}">'
        u'<thead><tr><th colspan="4">{a} &rarr; {b}</th></tr></thead>'
        u'<tbody>{rows}</tbody>'
        u'</table>'
    ).format(
        extra=u" diff-colorblind" if colorblind else u"",
        a=escape(result.source_a),
        b=escape(result.source_b),
        rows=u"".join(rows),
    )
