"""Maven coordinates for libraries."""

from typing import Optional


class MavenCoordinate:
    """
        A maven coordinate, like one of these:
        "org.lwjgl:lwjgl:3.3.1"
        "org.lwjgl:lwjgl:3.3.1:natives-linux"
        "de.oceanlabs.mcp:mcp_config:1.20.1-20230612.114412@zip"
    """

    def __init__(self, group: str, artifact: str, version: str, classifier: Optional[str] = None,
                 extension: Optional[str] = None):
        self.group = group
        self.artifact = artifact
        self.version = version
        self.classifier = classifier
        self.extension = extension or "jar"

    @classmethod
    def parse(cls, value: str) -> "MavenCoordinate":
        ext_split = value.split('@', 1)
        components = ext_split[0].split(':')
        if len(components) < 3:
            raise ValueError(f"Invalid maven coordinate: {value!r}")

        extension = ext_split[1] if len(ext_split) == 2 else None
        classifier = components[3] if len(components) >= 4 else None
        return cls(components[0], components[1], components[2], classifier, extension)

    def with_classifier(self, classifier: str) -> "MavenCoordinate":
        return MavenCoordinate(self.group, self.artifact, self.version, classifier, self.extension)

    def filename(self) -> str:
        if self.classifier:
            return "%s-%s-%s.%s" % (self.artifact, self.version, self.classifier, self.extension)
        return "%s-%s.%s" % (self.artifact, self.version, self.extension)

    def base(self) -> str:
        return "%s/%s/%s/" % (self.group.replace('.', '/'), self.artifact, self.version)

    @property
    def path(self) -> str:
        return self.base() + self.filename()

    def url(self, repository: str) -> str:
        return repository.rstrip('/') + '/' + self.path

    def __str__(self):
        ext = '' if self.extension == 'jar' else "@%s" % self.extension
        if self.classifier:
            return "%s:%s:%s:%s%s" % (self.group, self.artifact, self.version, self.classifier, ext)
        return "%s:%s:%s%s" % (self.group, self.artifact, self.version, ext)

    def __repr__(self):
        return f"MavenCoordinate('{self}')"

    def __eq__(self, other):
        return str(self) == str(other)

    def __hash__(self):
        return hash(str(self))
