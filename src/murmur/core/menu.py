"""
Declarative tray menu.

The menu is described as a tuple of :class:`MenuEntry` values and rendered
into a QMenu by the tray, so its structure can be built and checked without
a running Qt application.
"""

from dataclasses import dataclass
from functools import partial
from typing import Callable, Iterable, Optional, Tuple

from .asr.model_registry import ModelCatalog

MenuAction = Callable[[], None]


@dataclass(frozen=True)
class MenuEntry:
    label: str = ""
    action: Optional[MenuAction] = None
    checked: Optional[bool] = None
    enabled: bool = True
    children: Tuple["MenuEntry", ...] = ()
    separator: bool = False

    @property
    def is_submenu(self) -> bool:
        return bool(self.children)

    def find(self, label: str) -> Optional["MenuEntry"]:
        for child in self.children:
            if child.label == label:
                return child
        return None


SEPARATOR = MenuEntry(separator=True)


def _model_entries(
    catalog: ModelCatalog,
    selected_model: str,
    on_select_model: Callable[[str], None],
) -> Tuple[MenuEntry, ...]:
    entries = [
        MenuEntry(
            label=name,
            action=partial(on_select_model, name),
            checked=name == selected_model,
        )
        for name in catalog.available
    ]
    entries += [
        MenuEntry(label=name, checked=False, enabled=False)
        for name in catalog.disabled
    ]
    return tuple(entries)


def _language_entries(
    languages: Iterable[str],
    selected_language: str,
    on_select_language: Callable[[str], None],
) -> Tuple[MenuEntry, ...]:
    return tuple(
        MenuEntry(
            label=language,
            action=partial(on_select_language, language),
            checked=language == selected_language,
        )
        for language in languages
    )


def build_tray_menu(
    catalog: ModelCatalog,
    selected_model: str,
    selected_language: str,
    languages: Iterable[str],
    status: str,
    on_select_model: Callable[[str], None],
    on_select_language: Callable[[str], None],
    on_delete_model: Callable[[str], None],
    on_open_models_folder: MenuAction,
    on_quit: MenuAction,
    busy: bool = False,
) -> Tuple[MenuEntry, ...]:
    """Build the right-click menu: model and language pickers, then utilities.

    While a model is loading (``busy``) the delete entries are disabled.
    """
    delete_entries = tuple(
        MenuEntry(
            label=name,
            action=partial(on_delete_model, name),
            enabled=not busy,
        )
        for name in catalog.local
    )

    return (
        MenuEntry(label=status, enabled=False),
        SEPARATOR,
        MenuEntry(
            label="Model",
            children=_model_entries(catalog, selected_model, on_select_model),
        ),
        MenuEntry(
            label="Language",
            children=_language_entries(
                languages, selected_language, on_select_language
            ),
        ),
        SEPARATOR,
        MenuEntry(
            label="Delete Model",
            children=delete_entries,
            enabled=bool(delete_entries),
        ),
        MenuEntry(label="Models Folder", action=on_open_models_folder),
        SEPARATOR,
        MenuEntry(label="Quit", action=on_quit),
    )
