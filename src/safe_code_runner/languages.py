from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence, Union

from .errors import UnsupportedLanguageError


class Placeholder(str, Enum):
    """Workspace paths substituted into command arguments at dispatch time."""

    SOURCE = "{source}"
    ARTIFACT = "{artifact}"
    WORKDIR = "{workdir}"


Token = Union[str, Placeholder]


class ProfileKind(str, Enum):
    INTERPRETED = "interpreted"
    COMPILED_NATIVE = "compiled-native"
    COMPILED_MANAGED = "compiled-managed"
    DELEGATED = "delegated"


class Language(str, Enum):
    """Closed set of languages the runner accepts."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    C = "c"
    CPP = "cpp"
    JAVA = "java"

    @classmethod
    def parse(cls, value: str) -> "Language":
        """Parse a caller-supplied identifier, ignoring case and accepting aliases.

        Example:
            ```python
            assert Language.parse("C++") is Language.CPP
            ```
        """
        key = (value or "").strip().lower()
        try:
            return _ALIASES[key]
        except KeyError:
            raise UnsupportedLanguageError(value) from None


_ALIASES: dict[str, Language] = {
    **{lang.value: lang for lang in Language},
    "py": Language.PYTHON,
    "python3": Language.PYTHON,
    "js": Language.JAVASCRIPT,
    "node": Language.JAVASCRIPT,
    "c++": Language.CPP,
    "cxx": Language.CPP,
}


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """A program plus an argument template.

    Example:
        ```python
        spec = CommandSpec("g++", ("-O2", "-o", Placeholder.ARTIFACT, Placeholder.SOURCE))
        ```
    """

    program: Token
    args: tuple[Token, ...] = ()

    def render(self, paths: Mapping[Placeholder, str]) -> list[str]:
        """Resolve placeholders against concrete paths and return an argv list.

        Example:
            ```python
            argv = spec.render({Placeholder.SOURCE: "/tmp/a.cpp", Placeholder.ARTIFACT: "/tmp/a"})
            ```
        """
        return [_render_token(token, paths) for token in (self.program, *self.args)]

    def with_program(self, program: str) -> "CommandSpec":
        return CommandSpec(program, self.args)

    def __str__(self) -> str:
        return " ".join(str(t.value if isinstance(t, Placeholder) else t) for t in (self.program, *self.args))


def _render_token(token: Token, paths: Mapping[Placeholder, str]) -> str:
    if isinstance(token, Placeholder):
        try:
            return paths[token]
        except KeyError:
            raise ValueError(f"No path available for placeholder {token.value}") from None
    return token


@dataclass(frozen=True, slots=True)
class LanguageProfile:
    """Immutable recipe for building and running one language.

    Example:
        ```python
        profile = LanguageProfile(Language.PYTHON, ProfileKind.INTERPRETED, "py", (), CommandSpec("python3", (Placeholder.SOURCE,)))
        ```
    """

    language: Language
    kind: ProfileKind
    file_extension: str
    build_steps: tuple[CommandSpec, ...]
    run_step: CommandSpec
    source_filename: str | None = None
    image: str | None = field(default=None)

    @property
    def id(self) -> str:
        return self.language.value

    @property
    def delegated(self) -> bool:
        return self.kind is ProfileKind.DELEGATED


def _native_profiles() -> dict[Language, LanguageProfile]:
    src, art, wd = Placeholder.SOURCE, Placeholder.ARTIFACT, Placeholder.WORKDIR
    return {
        Language.PYTHON: LanguageProfile(
            Language.PYTHON,
            ProfileKind.INTERPRETED,
            "py",
            (),
            CommandSpec("python3", (src,)),
        ),
        Language.JAVASCRIPT: LanguageProfile(
            Language.JAVASCRIPT,
            ProfileKind.INTERPRETED,
            "js",
            (),
            CommandSpec("node", (src,)),
        ),
        Language.C: LanguageProfile(
            Language.C,
            ProfileKind.COMPILED_NATIVE,
            "c",
            (CommandSpec("gcc", ("-O2", "-o", art, src)),),
            CommandSpec(art),
        ),
        Language.CPP: LanguageProfile(
            Language.CPP,
            ProfileKind.COMPILED_NATIVE,
            "cpp",
            (CommandSpec("g++", ("-O2", "-o", art, src)),),
            CommandSpec(art),
        ),
        # javac insists the public class lives in a file of the same name.
        Language.JAVA: LanguageProfile(
            Language.JAVA,
            ProfileKind.COMPILED_MANAGED,
            "java",
            (CommandSpec("javac", ("-d", wd, src)),),
            CommandSpec("java", ("-cp", wd, "Main")),
            source_filename="Main.java",
        ),
    }


DEFAULT_IMAGES: Mapping[str, str] = MappingProxyType(
    {
        Language.PYTHON.value: "code-runner-python",
        Language.JAVASCRIPT.value: "code-runner-js",
        Language.C.value: "code-runner-c",
        Language.CPP.value: "code-runner-cpp",
        Language.JAVA.value: "code-runner-java",
    }
)


def _delegated_profile(native: LanguageProfile, image: str) -> LanguageProfile:
    # The runner image owns compile-then-run; only the source is handed over.
    return LanguageProfile(
        native.language,
        ProfileKind.DELEGATED,
        native.file_extension,
        (),
        CommandSpec(image),
        source_filename=native.source_filename,
        image=image,
    )


def _configured_language(identifier: str) -> Language:
    try:
        return Language.parse(identifier)
    except UnsupportedLanguageError as exc:
        raise ValueError(f"Unknown language in runner config: {identifier!r}") from exc


def _remap_program(command: CommandSpec, programs: Mapping[str, str]) -> CommandSpec:
    if isinstance(command.program, str) and command.program in programs:
        return command.with_program(programs[command.program])
    return command


class LanguageRegistry:
    """Fixed mapping from language identifiers to profiles, built once at startup.

    Example:
        ```python
        registry = LanguageRegistry(delegated=["java"])
        profile = registry.resolve("Python")
        ```
    """

    def __init__(
        self,
        *,
        delegated: Iterable[str] = (),
        images: Mapping[str, str] | None = None,
        programs: Mapping[str, str] | None = None,
    ) -> None:
        """Build every profile, delegating the listed languages to runner images.

        `delegated` accepts language identifiers or `"*"` for every language.
        `programs` remaps program names (e.g. `python3`) to host-specific paths.

        Example:
            ```python
            registry = LanguageRegistry(programs={"python3": "/usr/bin/python3.12"})
            ```
        """
        wanted = {str(item).strip().lower() for item in delegated}
        delegate_all = "*" in wanted
        delegate = set(Language) if delegate_all else {_configured_language(item) for item in wanted}
        image_map = {**DEFAULT_IMAGES, **{_configured_language(k).value: v for k, v in (images or {}).items()}}
        program_map = dict(programs or {})

        profiles: dict[Language, LanguageProfile] = {}
        for language, native in _native_profiles().items():
            if language in delegate:
                profiles[language] = _delegated_profile(native, image_map[language.value])
                continue
            profiles[language] = LanguageProfile(
                native.language,
                native.kind,
                native.file_extension,
                tuple(_remap_program(step, program_map) for step in native.build_steps),
                _remap_program(native.run_step, program_map),
                source_filename=native.source_filename,
            )
        missing = set(Language) - set(profiles)
        if missing:
            raise ValueError(f"Languages without a profile: {sorted(m.value for m in missing)}")
        self._profiles: Mapping[Language, LanguageProfile] = MappingProxyType(profiles)

    def resolve(self, language_id: str) -> LanguageProfile:
        """Return the profile for an identifier or raise `UnsupportedLanguageError`.

        Example:
            ```python
            profile = registry.resolve("cpp")
            ```
        """
        return self._profiles[Language.parse(language_id)]

    def profiles(self) -> Sequence[LanguageProfile]:
        return list(self._profiles.values())

    def language_for_extension(self, extension: str) -> Language:
        """Guess a language from a file extension such as `.cpp`.

        Example:
            ```python
            assert registry.language_for_extension(".js") is Language.JAVASCRIPT
            ```
        """
        ext = extension.lower().lstrip(".")
        for profile in self._profiles.values():
            if profile.file_extension == ext:
                return profile.language
        if ext in {"cc", "cxx", "hpp"}:
            return Language.CPP
        raise UnsupportedLanguageError(extension)
