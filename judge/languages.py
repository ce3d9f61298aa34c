import dataclasses
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .constant import Language
from .exception import UnsupportedLanguageError


@dataclasses.dataclass(frozen=True)
class LanguageAdapter:
    '''Command templates for one runtime.

    Templates are argv lists; ``{source}``, ``{artifact}`` and ``{workdir}``
    are substituted with absolute paths inside the scratch directory.
    '''
    name: str
    source_name: str
    run_command: List[str]
    compile_command: Optional[List[str]] = None
    artifact_name: Optional[str] = None
    aliases: tuple = ()

    @property
    def needs_compile(self) -> bool:
        return self.compile_command is not None

    def _render(self, template: List[str], workdir: Path) -> List[str]:
        paths = {
            'source': str(workdir / self.source_name),
            'artifact': str(workdir / (self.artifact_name or '')),
            'workdir': str(workdir),
        }
        return [part.format(**paths) for part in template]

    def compile_argv(self, workdir: Path) -> List[str]:
        if not self.needs_compile:
            raise ValueError(f'{self.name} has no compile step')
        return self._render(self.compile_command, workdir)

    def run_argv(self, workdir: Path) -> List[str]:
        return self._render(self.run_command, workdir)


DEFAULT_ADAPTERS = [
    LanguageAdapter(
        name=Language.PYTHON.value,
        source_name='main.py',
        run_command=[sys.executable or 'python3', '{source}'],
        aliases=('py', 'python3'),
    ),
    LanguageAdapter(
        name=Language.C.value,
        source_name='main.c',
        compile_command=[
            'gcc', '-std=c11', '-O2', '{source}', '-o', '{artifact}', '-lm'
        ],
        artifact_name='main',
        run_command=['{artifact}'],
    ),
    LanguageAdapter(
        name=Language.CPP.value,
        source_name='main.cpp',
        compile_command=[
            'g++', '-std=c++17', '-O2', '{source}', '-o', '{artifact}'
        ],
        artifact_name='main',
        run_command=['{artifact}'],
        aliases=('c++', 'cpp17'),
    ),
    LanguageAdapter(
        name=Language.JAVA.value,
        source_name='Main.java',
        compile_command=['javac', '-d', '{workdir}', '{source}'],
        artifact_name='Main.class',
        run_command=['java', '-cp', '{workdir}', 'Main'],
    ),
    LanguageAdapter(
        name=Language.JAVASCRIPT.value,
        source_name='main.js',
        run_command=['node', '{source}'],
        aliases=('js', 'node'),
    ),
]


class LanguageRegistry:

    def __init__(self, adapters=None):
        self._adapters: Dict[str, LanguageAdapter] = {}
        self._aliases: Dict[str, str] = {}
        for adapter in adapters or DEFAULT_ADAPTERS:
            self.register(adapter)

    @classmethod
    def from_config(cls, cfg: dict) -> 'LanguageRegistry':
        '''Build the default registry, then apply ``cfg["languages"]``.

        Each entry either patches a known language (e.g. a different
        ``compile_command``) or defines a new one.
        '''
        registry = cls()
        for name, overrides in (cfg.get('languages') or {}).items():
            base = registry._adapters.get(name)
            fields = dataclasses.asdict(base) if base else {'name': name}
            fields.update(overrides)
            fields['aliases'] = tuple(fields.get('aliases') or ())
            registry.register(LanguageAdapter(**fields))
        return registry

    def register(self, adapter: LanguageAdapter):
        self._adapters[adapter.name] = adapter
        for alias in adapter.aliases:
            self._aliases[alias] = adapter.name

    def resolve(self, tag: str) -> Optional[str]:
        key = str(tag or '').strip().lower()
        if key in self._adapters:
            return key
        return self._aliases.get(key)

    def get(self, tag: str) -> LanguageAdapter:
        name = self.resolve(tag)
        if name is None:
            raise UnsupportedLanguageError(tag)
        return self._adapters[name]

    def supports(self, tag: str) -> bool:
        return self.resolve(tag) is not None

    def supported(self) -> List[str]:
        return [*self._adapters.keys()]
