"""Train a small iris classifier locally and write model.joblib and iris.csv."""

import joblib
from sklearn.datasets import load_iris
from sklearn.linear_model import LogisticRegression


def main() -> None:
    iris = load_iris(as_frame=True)
    frame = iris.frame.rename(columns={"target": "species"})
    frame["species"] = frame["species"].map(dict(enumerate(iris.target_names)))
    frame.to_csv("iris.csv", index=False)

    model = LogisticRegression(max_iter=500)
    model.fit(frame.drop(columns=["species"]), frame["species"])
    joblib.dump(model, "model.joblib")
    print(f"Wrote iris.csv ({len(frame)} rows) and model.joblib")


if __name__ == "__main__":
    main()
