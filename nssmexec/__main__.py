from nssmexec.scripts.services import install


if __name__ == "__main__":
    install()
