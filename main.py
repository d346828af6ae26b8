"""CLI entrypoint for the webcam timelapse service."""

from webcam_timelapse.app import AnimationService


def main() -> None:
    """Instantiate the service facade and start the scheduler."""
    service = AnimationService.from_config_file()
    service.run()


if __name__ == "__main__":
    main()
