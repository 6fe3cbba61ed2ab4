from importlib.metadata import PackageNotFoundError, version as pkg_version


def app_version() -> str:
    try:
        return pkg_version("nodehub")
    except PackageNotFoundError:
        return "dev"
